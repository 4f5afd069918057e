"""Fleet reporting and the maintenance rules that move vehicles in and out of service."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from .models import MaintenanceRecord, Vehicle, VehicleSpecification

logger = logging.getLogger(__name__)

LOW_FUEL_PERCENT = 25
EARNINGS_DEFAULT_DAYS = 30
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _average(total: Decimal, count: int) -> Decimal:
    return _money(total / count) if count else ZERO


def fleet_statistics() -> dict:
    totals = Vehicle.objects.aggregate(
        total=Count("id"),
        available=Count("id", filter=Q(availability=True)),
        low_fuel=Count("id", filter=Q(fuel_level__lt=LOW_FUEL_PERCENT)),
        average_rate=Avg("rental_rate"),
        average_condition=Avg("condition_rating"),
    )
    by_status = dict(Vehicle.objects.values_list("status").order_by().annotate(n=Count("id")))
    by_category = dict(
        Vehicle.objects.values_list("specification__vehicle_category")
        .order_by()
        .annotate(n=Count("id"))
    )
    maintenance = MaintenanceRecord.objects.aggregate(
        open=Count("id", filter=Q(status__in=MaintenanceRecord.OPEN_STATUSES)),
        spent=Sum("cost", filter=Q(status=MaintenanceRecord.Status.COMPLETED)),
    )
    average_condition = totals["average_condition"]
    return {
        "total": totals["total"],
        "available": totals["available"],
        "low_fuel": totals["low_fuel"],
        "average_rental_rate": _money(totals["average_rate"]),
        "average_condition": round(average_condition, 1) if average_condition is not None else None,
        "by_status": {value: by_status.get(value, 0) for value in Vehicle.Status.values},
        "by_category": {
            value: by_category.get(value, 0) for value in VehicleSpecification.Category.values
        },
        "maintenance": {
            "open": maintenance["open"],
            "total_cost": _money(maintenance["spent"]),
        },
    }


def vehicle_earnings(start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
    """
    Revenue from completed bookings whose return date falls in ``[start_date, end_date]``.

    The window defaults to the last thirty days ending today.
    """
    from bookings.models import Booking

    end_date = end_date or timezone.localdate()
    start_date = start_date or end_date - timedelta(days=EARNINGS_DEFAULT_DAYS)
    completed = Booking.objects.filter(
        status=Booking.Status.COMPLETED,
        end_at__date__gte=start_date,
        end_at__date__lte=end_date,
    )
    summary = completed.aggregate(total=Sum("total_amount"), count=Count("id"))
    total = _money(summary["total"])
    rows = (
        completed.values("vehicle__specification__vehicle_category")
        .order_by("vehicle__specification__vehicle_category")
        .annotate(earnings=Sum("total_amount"), bookings=Count("id"))
    )
    by_category = []
    for row in rows:
        earnings = _money(row["earnings"])
        by_category.append(
            {
                "category": row["vehicle__specification__vehicle_category"],
                "earnings": earnings,
                "bookings_count": row["bookings"],
                "average_value": _average(earnings, row["bookings"]),
            }
        )
    return {
        "period": {"start_date": start_date, "end_date": end_date},
        "summary": {
            "total_earnings": total,
            "total_bookings": summary["count"],
            "average_booking_value": _average(total, summary["count"]),
        },
        "by_category": by_category,
    }


def sync_vehicle_for_maintenance(record: MaintenanceRecord) -> None:
    """
    Apply a maintenance record's status to its vehicle.

    Work in progress takes an idle vehicle out of service; finishing the last
    open job hands it back. Completed jobs also carry the odometer forward.
    """
    vehicle = Vehicle.objects.select_for_update().get(pk=record.vehicle_id)
    if record.status == MaintenanceRecord.Status.IN_PROGRESS:
        if vehicle.status in (Vehicle.Status.AVAILABLE, Vehicle.Status.RESERVED):
            vehicle.set_status(Vehicle.Status.MAINTENANCE)
            logger.info(
                "vehicles: moved into maintenance",
                extra={"vehicle_id": vehicle.pk, "maintenance_id": record.pk},
            )
        return

    if record.status == MaintenanceRecord.Status.COMPLETED:
        if record.mileage_at_service and record.mileage_at_service > vehicle.mileage:
            vehicle.mileage = record.mileage_at_service
            vehicle.save(update_fields=["mileage", "updated_at"])

    if record.status in (MaintenanceRecord.Status.COMPLETED, MaintenanceRecord.Status.CANCELLED):
        still_open = vehicle.maintenance_records.filter(
            status=MaintenanceRecord.Status.IN_PROGRESS
        ).exclude(pk=record.pk)
        if vehicle.status == Vehicle.Status.MAINTENANCE and not still_open.exists():
            vehicle.set_status(Vehicle.Status.AVAILABLE)
            logger.info(
                "vehicles: returned from maintenance",
                extra={"vehicle_id": vehicle.pk, "maintenance_id": record.pk},
            )


def save_maintenance_record(serializer, vehicle: Optional[Vehicle] = None) -> MaintenanceRecord:
    with transaction.atomic():
        if vehicle is not None:
            record = serializer.save(vehicle=vehicle)
        else:
            record = serializer.save()
        sync_vehicle_for_maintenance(record)
    return record


def update_condition(
    vehicle: Vehicle, condition_rating: int, is_damaged: bool, damage_description: str = ""
) -> Vehicle:
    vehicle.condition_rating = condition_rating
    fields = ["condition_rating", "updated_at"]
    if is_damaged:
        vehicle.status = Vehicle.Status.DAMAGED
        vehicle.availability = False
        note = f"Damage reported: {damage_description.strip()}"
        vehicle.notes = f"{vehicle.notes}\n{note}".strip()
        fields += ["status", "availability", "notes"]
    vehicle.save(update_fields=fields)
    return vehicle


def mark_cleaned(vehicle: Vehicle) -> Vehicle:
    vehicle.last_cleaned_at = timezone.now()
    vehicle.save(update_fields=["last_cleaned_at", "updated_at"])
    return vehicle


def delete_maintenance_record(record: MaintenanceRecord) -> None:
    with transaction.atomic():
        record.status = MaintenanceRecord.Status.CANCELLED
        sync_vehicle_for_maintenance(record)
        record.delete()
