"""Database models for vehicle bookings."""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from locations.models import Location
from vehicles.models import Vehicle


class Booking(models.Model):
    """A reservation of one vehicle for a time range by a user."""

    class Status(models.TextChoices):
        PENDING = "pending", "pending"
        CONFIRMED = "confirmed", "confirmed"
        ACTIVE = "active", "active"
        COMPLETED = "completed", "completed"
        CANCELLED = "cancelled", "cancelled"

    # Statuses that hold the vehicle for their date range.
    BLOCKING_STATUSES = (Status.PENDING, Status.CONFIRMED)
    TERMINAL_STATUSES = (Status.COMPLETED, Status.CANCELLED)

    ALLOWED_TRANSITIONS = {
        Status.PENDING: {Status.CONFIRMED, Status.CANCELLED},
        Status.CONFIRMED: {Status.ACTIVE, Status.COMPLETED, Status.CANCELLED},
        Status.ACTIVE: {Status.COMPLETED},
        Status.COMPLETED: set(),
        Status.CANCELLED: set(),
    }

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings",
        on_delete=models.CASCADE,
    )
    vehicle = models.ForeignKey(
        Vehicle,
        related_name="bookings",
        on_delete=models.PROTECT,
    )
    location = models.ForeignKey(
        Location,
        related_name="bookings",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    start_at = models.DateTimeField()
    end_at = models.DateTimeField(help_text="Return time, must be after start_at.")
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["vehicle", "start_at", "end_at"], name="booking_vehicle_range_idx"),
            models.Index(fields=["user", "status"], name="booking_user_status_idx"),
            models.Index(fields=["status", "start_at"], name="booking_status_start_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} for vehicle {self.vehicle_id} ({self.status})"

    @property
    def days(self) -> int:
        from bookings.domain import booking_days

        if not self.start_at or not self.end_at:
            return 0
        return booking_days(self.start_at, self.end_at)

    def is_blocking(self) -> bool:
        return self.status in self.BLOCKING_STATUSES

    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in self.ALLOWED_TRANSITIONS.get(self.status, set())

    def starts_in_past(self) -> bool:
        if not self.start_at:
            return False
        return self.start_at < timezone.now()
