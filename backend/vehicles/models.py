"""Fleet inventory: specifications, vehicles, their images and maintenance history."""
from __future__ import annotations

from django.db import models
from django.db.models import Q

from locations.models import Location


class VehicleSpecification(models.Model):
    """Make/model description shared by every vehicle of the same kind."""

    class FuelType(models.TextChoices):
        PETROL = "petrol", "Petrol"
        DIESEL = "diesel", "Diesel"
        ELECTRIC = "electric", "Electric"
        HYBRID = "hybrid", "Hybrid"

    class Transmission(models.TextChoices):
        MANUAL = "manual", "Manual"
        AUTOMATIC = "automatic", "Automatic"
        CVT = "cvt", "CVT"

    class Category(models.TextChoices):
        FOUR_WHEELER = "four_wheeler", "Four wheeler"
        TWO_WHEELER = "two_wheeler", "Two wheeler"
        COMMERCIAL = "commercial", "Commercial"

    manufacturer = models.CharField(max_length=80)
    model = models.CharField(max_length=80)
    year = models.PositiveSmallIntegerField()
    fuel_type = models.CharField(max_length=16, choices=FuelType.choices)
    engine_capacity = models.CharField(max_length=32, blank=True, default="")
    transmission = models.CharField(max_length=16, choices=Transmission.choices)
    seating_capacity = models.PositiveSmallIntegerField(default=5)
    color = models.CharField(max_length=40, blank=True, default="")
    features = models.JSONField(default=list, blank=True)
    vehicle_category = models.CharField(
        max_length=16,
        choices=Category.choices,
        default=Category.FOUR_WHEELER,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["manufacturer", "model", "-year"]
        indexes = [
            models.Index(fields=["manufacturer", "model"], name="vehicle_spec_make_model_idx"),
            models.Index(fields=["vehicle_category"], name="vehicle_spec_category_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.year} {self.manufacturer} {self.model}"


class Vehicle(models.Model):
    """A rentable unit with its own plate, rate and operational state."""

    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        RENTED = "rented", "Rented"
        MAINTENANCE = "maintenance", "Maintenance"
        OUT_OF_SERVICE = "out_of_service", "Out of service"
        RESERVED = "reserved", "Reserved"
        DAMAGED = "damaged", "Damaged"

    specification = models.ForeignKey(
        VehicleSpecification,
        related_name="vehicles",
        on_delete=models.PROTECT,
    )
    location = models.ForeignKey(
        Location,
        related_name="vehicles",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    rental_rate = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Daily rental rate.",
    )
    availability = models.BooleanField(default=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.AVAILABLE,
    )
    license_plate = models.CharField(max_length=20, unique=True)
    mileage = models.PositiveIntegerField(default=0)
    fuel_level = models.PositiveSmallIntegerField(default=100, help_text="Percent full.")
    condition_rating = models.PositiveSmallIntegerField(default=10, help_text="1 (poor) to 10.")
    notes = models.TextField(blank=True, default="")
    last_cleaned_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["location", "availability"], name="vehicle_location_avail_idx"),
            models.Index(fields=["status"], name="vehicle_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.license_plate} ({self.specification_id})"

    def set_status(self, status: str) -> None:
        """Update status; anything other than ``available`` takes the vehicle off the market."""
        self.status = status
        self.availability = status == self.Status.AVAILABLE
        self.save(update_fields=["status", "availability", "updated_at"])


class VehicleImage(models.Model):
    vehicle = models.ForeignKey(
        Vehicle,
        related_name="images",
        on_delete=models.CASCADE,
    )
    key = models.CharField(max_length=512)
    url = models.URLField(max_length=1024)
    alt = models.CharField(max_length=255, blank=True, default="")
    caption = models.CharField(max_length=255, blank=True, default="")
    is_primary = models.BooleanField(default=False)
    display_order = models.PositiveIntegerField(default=0)
    content_type = models.CharField(max_length=64, blank=True, default="")
    size = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-is_primary", "display_order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["vehicle"],
                condition=Q(is_primary=True),
                name="vehicle_single_primary_image",
            ),
        ]

    def __str__(self) -> str:
        return f"Image {self.pk} for vehicle {self.vehicle_id}"


class MaintenanceRecord(models.Model):
    """A service event logged against a vehicle."""

    class Type(models.TextChoices):
        ROUTINE = "routine", "Routine"
        REPAIR = "repair", "Repair"
        INSPECTION = "inspection", "Inspection"
        CLEANING = "cleaning", "Cleaning"
        EMERGENCY = "emergency", "Emergency"

    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    OPEN_STATUSES = (Status.SCHEDULED, Status.IN_PROGRESS)

    vehicle = models.ForeignKey(
        Vehicle,
        related_name="maintenance_records",
        on_delete=models.CASCADE,
    )
    maintenance_type = models.CharField(
        max_length=16,
        choices=Type.choices,
        default=Type.ROUTINE,
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.SCHEDULED,
    )
    description = models.TextField()
    cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    maintenance_date = models.DateField()
    service_provider = models.CharField(max_length=255, blank=True, default="")
    mileage_at_service = models.PositiveIntegerField(null=True, blank=True)
    next_service_mileage = models.PositiveIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-maintenance_date", "-id"]
        indexes = [
            models.Index(fields=["vehicle", "status"], name="maintenance_vehicle_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.get_maintenance_type_display()} for vehicle {self.vehicle_id}"
