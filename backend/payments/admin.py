from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "user", "provider", "amount", "currency", "status", "created_at")
    list_filter = ("provider", "status")
    search_fields = ("external_id", "user__email", "phone_number")
    readonly_fields = ("external_id", "metadata", "paid_at", "refunded_at", "created_at", "updated_at")
