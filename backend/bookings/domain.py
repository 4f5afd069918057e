"""Domain helpers for booking validation, availability and state transitions."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.http import Http404
from django.utils import timezone

from locations.models import Location
from vehicles.models import Vehicle

from .models import Booking

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

UNAVAILABLE_NOT_FOUND = "Vehicle not found"
UNAVAILABLE_FLAG = "Vehicle is currently unavailable"
UNAVAILABLE_LOCATION = "Vehicle not available at requested location"
UNAVAILABLE_BOOKED = "Vehicle is already booked for the requested period"
CONFLICT_MESSAGE = "Vehicle is already booked for the selected dates"


def booking_days(start_at: datetime, end_at: datetime) -> int:
    """Billable days: partial days round up, minimum one."""
    seconds = (end_at - start_at).total_seconds()
    return max(1, math.ceil(seconds / ONE_DAY.total_seconds()))


def compute_total(rate: Decimal, start_at: datetime, end_at: datetime) -> Decimal:
    total = Decimal(rate) * booking_days(start_at, end_at)
    return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_booking_dates(
    start_at: datetime | None,
    end_at: datetime | None,
    *,
    allow_past: bool = False,
) -> None:
    """Validate that the provided times exist and form a valid range."""
    if not start_at or not end_at:
        raise ValidationError({"non_field_errors": ["Booking and return dates are required."]})
    if end_at <= start_at:
        raise ValidationError({"end_at": ["Return date must be after booking date."]})
    if not allow_past and start_at < timezone.now():
        raise ValidationError({"start_at": ["Booking date cannot be in the past."]})


def ranges_overlap(
    existing_start: datetime,
    existing_end: datetime,
    candidate_start: datetime,
    candidate_end: datetime,
) -> bool:
    """
    True when two half-open ranges ``[start, end)`` share at least one instant.

    A candidate ending exactly when an existing booking starts does not overlap.
    """
    return existing_start < candidate_end and existing_end > candidate_start


def overlap_q(start_at: datetime, end_at: datetime) -> Q:
    """
    ORM form of :func:`ranges_overlap` against ``start_at``/``end_at`` columns.

    Union of: candidate starts inside an existing booking, candidate ends
    inside one, candidate encloses one.
    """
    starts_inside = Q(start_at__lte=start_at, end_at__gt=start_at)
    ends_inside = Q(start_at__lt=end_at, end_at__gte=end_at)
    encloses = Q(start_at__gte=start_at, end_at__lte=end_at)
    return starts_inside | ends_inside | encloses


def conflicting_bookings(
    vehicle_id: int,
    start_at: datetime,
    end_at: datetime,
    *,
    exclude_booking_id: Optional[int] = None,
) -> QuerySet:
    qs = Booking.objects.filter(vehicle_id=vehicle_id, status__in=Booking.BLOCKING_STATUSES)
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    return qs.filter(overlap_q(start_at, end_at))


def ensure_no_conflict(
    vehicle_id: int,
    start_at: datetime,
    end_at: datetime,
    *,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Ensure there are no overlapping pending/confirmed bookings for the vehicle."""
    conflicts = conflicting_bookings(
        vehicle_id, start_at, end_at, exclude_booking_id=exclude_booking_id
    )
    if conflicts.exists():
        raise ValidationError({"non_field_errors": [CONFLICT_MESSAGE]})


def check_availability(
    vehicle_id: int,
    start_at: datetime,
    end_at: datetime,
    location_id: Optional[int] = None,
) -> dict:
    """
    Report whether a vehicle can be booked for a range.

    Returns ``{"available": False, "reason": ...}`` or
    ``{"available": True, "vehicle_id", "start_at", "end_at", "location_id"}``.
    """
    validate_booking_dates(start_at, end_at, allow_past=True)

    vehicle = Vehicle.objects.filter(pk=vehicle_id).first()
    if vehicle is None:
        return {"available": False, "reason": UNAVAILABLE_NOT_FOUND}
    if not vehicle.availability:
        return {"available": False, "reason": UNAVAILABLE_FLAG}
    if location_id and vehicle.location_id != int(location_id):
        return {"available": False, "reason": UNAVAILABLE_LOCATION}
    if conflicting_bookings(vehicle.id, start_at, end_at).exists():
        return {"available": False, "reason": UNAVAILABLE_BOOKED}

    return {
        "available": True,
        "vehicle_id": vehicle.id,
        "start_at": start_at,
        "end_at": end_at,
        "location_id": int(location_id) if location_id else vehicle.location_id,
    }


def available_vehicles(
    start_at: datetime,
    end_at: datetime,
    location_id: Optional[int] = None,
) -> QuerySet:
    validate_booking_dates(start_at, end_at, allow_past=True)
    busy = Booking.objects.filter(status__in=Booking.BLOCKING_STATUSES).filter(
        overlap_q(start_at, end_at)
    )
    qs = Vehicle.objects.filter(availability=True).exclude(
        pk__in=busy.values("vehicle_id")
    )
    if location_id:
        qs = qs.filter(location_id=location_id)
    return qs.select_related("specification", "location").prefetch_related("images")


def _resolve_location(location_id: Optional[int], vehicle: Vehicle) -> Optional[int]:
    if not location_id:
        return vehicle.location_id
    if not Location.objects.filter(pk=location_id).exists():
        raise Http404("Location not found")
    return int(location_id)


def create_booking(
    *,
    user,
    vehicle_id: int,
    start_at: datetime,
    end_at: datetime,
    location_id: Optional[int] = None,
    notes: str = "",
) -> Booking:
    """
    Create a pending booking.

    The vehicle row is locked for the duration of the check-and-insert so two
    concurrent requests for the same vehicle cannot both pass the overlap check.
    """
    validate_booking_dates(start_at, end_at)

    with transaction.atomic():
        vehicle = Vehicle.objects.select_for_update().filter(pk=vehicle_id).first()
        if vehicle is None:
            raise Http404("Vehicle not found")
        if not vehicle.availability:
            raise ValidationError({"vehicle": ["Vehicle is not available for booking."]})
        resolved_location = _resolve_location(location_id, vehicle)
        ensure_no_conflict(vehicle.id, start_at, end_at)

        booking = Booking.objects.create(
            user=user,
            vehicle=vehicle,
            location_id=resolved_location,
            start_at=start_at,
            end_at=end_at,
            total_amount=compute_total(vehicle.rental_rate, start_at, end_at),
            status=Booking.Status.PENDING,
            notes=notes or "",
        )

    logger.info(
        "bookings: created",
        extra={"booking_id": booking.id, "vehicle_id": vehicle.id, "user_id": user.id},
    )
    return booking


def update_booking(
    booking: Booking,
    *,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    location_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Booking:
    """Reschedule or relocate a pending booking and recompute its total."""
    if booking.is_terminal():
        raise ValidationError(
            {"status": ["Cannot update completed or cancelled bookings."]}
        )
    if booking.status != Booking.Status.PENDING:
        raise ValidationError({"status": ["Only pending bookings can be changed."]})

    new_start = start_at or booking.start_at
    new_end = end_at or booking.end_at
    dates_changed = new_start != booking.start_at or new_end != booking.end_at
    validate_booking_dates(new_start, new_end, allow_past=not dates_changed)

    with transaction.atomic():
        vehicle = Vehicle.objects.select_for_update().get(pk=booking.vehicle_id)
        if dates_changed:
            ensure_no_conflict(
                vehicle.id, new_start, new_end, exclude_booking_id=booking.id
            )
        booking.start_at = new_start
        booking.end_at = new_end
        booking.total_amount = compute_total(vehicle.rental_rate, new_start, new_end)
        if location_id is not None:
            booking.location_id = _resolve_location(location_id, vehicle)
        if notes is not None:
            booking.notes = notes
        booking.save()
    return booking


def _notify_status_change(booking: Booking) -> None:
    """Queue the renter email once the surrounding transaction commits."""
    from notifications import tasks as notification_tasks

    booking_id, new_status = booking.id, booking.status

    def _enqueue():
        try:
            notification_tasks.send_booking_status_email.delay(booking_id, new_status)
        except Exception:
            logger.info(
                "notifications: failed to queue booking status email",
                exc_info=True,
                extra={"booking_id": booking_id, "status": new_status},
            )

    transaction.on_commit(_enqueue)


def _transition(booking: Booking, new_status: str) -> Booking:
    booking.status = new_status
    booking.save(update_fields=["status", "updated_at"])
    logger.info(
        "bookings: status changed",
        extra={"booking_id": booking.id, "status": new_status},
    )
    _notify_status_change(booking)
    return booking


def assert_can_cancel(booking: Booking) -> None:
    if booking.status == Booking.Status.CANCELLED:
        raise ValidationError({"status": ["Booking is already cancelled."]})
    if booking.status == Booking.Status.COMPLETED:
        raise ValidationError({"status": ["Cannot cancel a completed booking."]})
    if not booking.can_transition_to(Booking.Status.CANCELLED):
        raise ValidationError({"status": ["Active rentals cannot be cancelled."]})


def assert_can_confirm(booking: Booking) -> None:
    if booking.status != Booking.Status.PENDING:
        raise ValidationError({"status": ["Only pending bookings can be confirmed."]})


def assert_can_activate(booking: Booking) -> None:
    if booking.status != Booking.Status.CONFIRMED:
        raise ValidationError({"status": ["Only confirmed bookings can be activated."]})


def assert_can_complete(booking: Booking) -> None:
    if booking.status not in (Booking.Status.CONFIRMED, Booking.Status.ACTIVE):
        raise ValidationError(
            {"status": ["Only confirmed or active bookings can be completed."]}
        )


def assert_can_delete(booking: Booking) -> None:
    if booking.status in (
        Booking.Status.CONFIRMED,
        Booking.Status.ACTIVE,
        Booking.Status.COMPLETED,
    ):
        raise ValidationError(
            {"status": ["Cannot delete confirmed or completed bookings."]}
        )


@transaction.atomic
def cancel_booking(booking: Booking) -> Booking:
    assert_can_cancel(booking)
    return _transition(booking, Booking.Status.CANCELLED)


@transaction.atomic
def confirm_booking(booking: Booking) -> Booking:
    assert_can_confirm(booking)
    return _transition(booking, Booking.Status.CONFIRMED)


@transaction.atomic
def activate_booking(booking: Booking) -> Booking:
    """Vehicle handed over; it is marked rented until the booking completes."""
    assert_can_activate(booking)
    booking.vehicle.set_status(Vehicle.Status.RENTED)
    return _transition(booking, Booking.Status.ACTIVE)


@transaction.atomic
def complete_booking(booking: Booking) -> Booking:
    assert_can_complete(booking)
    if booking.vehicle.status == Vehicle.Status.RENTED:
        booking.vehicle.set_status(Vehicle.Status.AVAILABLE)
    return _transition(booking, Booking.Status.COMPLETED)


def delete_booking(booking: Booking) -> None:
    assert_can_delete(booking)
    booking_id = booking.id
    booking.delete()
    logger.info("bookings: deleted", extra={"booking_id": booking_id})


def confirm_for_payment(booking: Booking) -> bool:
    """
    Confirm a booking because its payment completed.

    Only pending bookings move; confirmed, active and terminal bookings are
    left alone. Returns True when the status changed.
    """
    if booking.status != Booking.Status.PENDING:
        return False
    _transition(booking, Booking.Status.CONFIRMED)
    return True


def cancel_for_refund(booking: Booking) -> bool:
    if booking.status == Booking.Status.CANCELLED:
        return False
    _transition(booking, Booking.Status.CANCELLED)
    return True


def booking_statistics() -> dict:
    from payments.models import Payment

    by_status = {
        row["status"]: row["count"]
        for row in Booking.objects.values("status").annotate(count=Count("id"))
    }
    revenue = Payment.objects.filter(status=Payment.Status.COMPLETED).aggregate(
        total=Sum("amount")
    )["total"] or Decimal("0.00")
    return {
        "total": sum(by_status.values()),
        "by_status": {value: by_status.get(value, 0) for value in Booking.Status.values},
        "revenue": revenue,
    }


def upcoming_bookings(days: int) -> QuerySet:
    now = timezone.now()
    return (
        Booking.objects.filter(
            status=Booking.Status.CONFIRMED,
            start_at__gte=now,
            start_at__lt=now + timedelta(days=days),
        )
        .select_related("user", "vehicle", "vehicle__specification", "location")
        .order_by("start_at")
    )
