from django.contrib import admin

from .models import MaintenanceRecord, Vehicle, VehicleImage, VehicleSpecification


class VehicleImageInline(admin.TabularInline):
    model = VehicleImage
    extra = 0


class MaintenanceRecordInline(admin.TabularInline):
    model = MaintenanceRecord
    extra = 0
    fields = ("maintenance_type", "status", "maintenance_date", "cost", "description")


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ("license_plate", "specification", "location", "rental_rate", "status", "availability")
    list_filter = ("status", "availability", "location")
    search_fields = ("license_plate",)
    inlines = [VehicleImageInline, MaintenanceRecordInline]


@admin.register(VehicleSpecification)
class VehicleSpecificationAdmin(admin.ModelAdmin):
    list_display = ("manufacturer", "model", "year", "fuel_type", "vehicle_category")
    list_filter = ("fuel_type", "transmission", "vehicle_category")


@admin.register(MaintenanceRecord)
class MaintenanceRecordAdmin(admin.ModelAdmin):
    list_display = ("vehicle", "maintenance_type", "status", "maintenance_date", "cost")
    list_filter = ("maintenance_type", "status")
    search_fields = ("vehicle__license_plate", "description")
