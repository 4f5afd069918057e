from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.urls import reverse
from django.utils import timezone

from bookings.models import Booking
from vehicles.models import MaintenanceRecord, Vehicle, VehicleSpecification

pytestmark = pytest.mark.django_db


@pytest.fixture
def van(location):
    spec = VehicleSpecification.objects.create(
        manufacturer="Isuzu",
        model="NQR",
        year=2021,
        fuel_type=VehicleSpecification.FuelType.DIESEL,
        transmission=VehicleSpecification.Transmission.MANUAL,
        vehicle_category=VehicleSpecification.Category.COMMERCIAL,
    )
    return Vehicle.objects.create(
        specification=spec,
        location=location,
        rental_rate=Decimal("90.00"),
        license_plate="KCX 321X",
        fuel_level=10,
        condition_rating=6,
    )


def completed_booking(booking_factory, days_ago, amount, vehicle_obj=None):
    end_at = timezone.now() - timedelta(days=days_ago)
    return booking_factory(
        start_at=end_at - timedelta(days=2),
        end_at=end_at,
        status=Booking.Status.COMPLETED,
        total_amount=amount,
        vehicle_obj=vehicle_obj,
    )


def test_fleet_statistics(auth_client, support_user, vehicle, van):
    van.set_status(Vehicle.Status.MAINTENANCE)
    MaintenanceRecord.objects.create(
        vehicle=van,
        status=MaintenanceRecord.Status.IN_PROGRESS,
        maintenance_date="2026-02-01",
        description="Gearbox",
    )
    MaintenanceRecord.objects.create(
        vehicle=vehicle,
        status=MaintenanceRecord.Status.COMPLETED,
        maintenance_date="2026-01-05",
        description="Service",
        cost=Decimal("120.00"),
    )

    resp = auth_client(support_user).get(reverse("vehicle-statistics"))

    assert resp.status_code == 200
    stats = resp.data["data"]
    assert stats["total"] == 2
    assert stats["available"] == 1
    assert stats["low_fuel"] == 1
    assert stats["average_rental_rate"] == Decimal("70.00")
    assert stats["average_condition"] == 8.0
    assert stats["by_status"]["available"] == 1
    assert stats["by_status"]["maintenance"] == 1
    assert stats["by_status"]["rented"] == 0
    assert stats["by_category"] == {"four_wheeler": 1, "two_wheeler": 0, "commercial": 1}
    assert stats["maintenance"] == {"open": 1, "total_cost": Decimal("120.00")}


def test_statistics_hidden_from_renters(auth_client, renter_user):
    resp = auth_client(renter_user).get(reverse("vehicle-statistics"))

    assert resp.status_code == 403


def test_earnings_default_window(auth_client, admin_user, vehicle, van, booking_factory):
    completed_booking(booking_factory, 2, Decimal("150.00"))
    completed_booking(booking_factory, 5, Decimal("250.00"))
    completed_booking(booking_factory, 3, Decimal("300.00"), vehicle_obj=van)
    completed_booking(booking_factory, 60, Decimal("999.00"))
    booking_factory(status=Booking.Status.CONFIRMED, total_amount=Decimal("500.00"))

    resp = auth_client(admin_user).get(reverse("vehicle-earnings"))

    assert resp.status_code == 200
    report = resp.data["data"]
    assert report["period"]["end_date"] == timezone.localdate()
    assert report["summary"] == {
        "total_earnings": Decimal("700.00"),
        "total_bookings": 3,
        "average_booking_value": Decimal("233.33"),
    }
    by_category = {row["category"]: row for row in report["by_category"]}
    assert by_category["four_wheeler"]["earnings"] == Decimal("400.00")
    assert by_category["four_wheeler"]["average_value"] == Decimal("200.00")
    assert by_category["commercial"]["bookings_count"] == 1


def test_earnings_explicit_window(auth_client, admin_user, booking_factory):
    old = completed_booking(booking_factory, 60, Decimal("999.00"))
    completed_booking(booking_factory, 2, Decimal("150.00"))
    day = timezone.localtime(old.end_at).date()

    resp = auth_client(admin_user).get(
        reverse("vehicle-earnings"),
        {"start_date": (day - timedelta(days=1)).isoformat(), "end_date": day.isoformat()},
    )

    assert resp.status_code == 200
    assert resp.data["data"]["summary"]["total_earnings"] == Decimal("999.00")
    assert resp.data["data"]["period"]["start_date"] == day - timedelta(days=1)


def test_earnings_rejects_inverted_window(auth_client, admin_user):
    resp = auth_client(admin_user).get(
        reverse("vehicle-earnings"), {"start_date": "2026-05-10", "end_date": "2026-05-01"}
    )

    assert resp.status_code == 400
    assert "end_date" in resp.data["errors"]


def test_earnings_is_admin_only(auth_client, support_user):
    resp = auth_client(support_user).get(reverse("vehicle-earnings"))

    assert resp.status_code == 403


def test_empty_earnings(auth_client, admin_user):
    resp = auth_client(admin_user).get(
        reverse("vehicle-earnings"), {"start_date": "2026-01-01", "end_date": "2026-01-31"}
    )

    report = resp.data["data"]
    assert report["period"] == {"start_date": date(2026, 1, 1), "end_date": date(2026, 1, 31)}
    assert report["summary"]["total_earnings"] == Decimal("0.00")
    assert report["summary"]["average_booking_value"] == Decimal("0.00")
    assert report["by_category"] == []


def test_condition_update(auth_client, admin_user, vehicle):
    url = reverse("vehicle-update-condition", kwargs={"pk": vehicle.pk})

    resp = auth_client(admin_user).patch(url, {"condition_rating": 7}, format="json")

    assert resp.status_code == 200, resp.data
    vehicle.refresh_from_db()
    assert vehicle.condition_rating == 7
    assert vehicle.status == Vehicle.Status.AVAILABLE


def test_damage_report_takes_vehicle_off_market(auth_client, admin_user, vehicle):
    url = reverse("vehicle-update-condition", kwargs={"pk": vehicle.pk})
    client = auth_client(admin_user)

    resp = client.patch(url, {"condition_rating": 3, "is_damaged": True}, format="json")
    assert resp.status_code == 400
    assert "damage_description" in resp.data["errors"]

    resp = client.patch(
        url,
        {"condition_rating": 3, "is_damaged": True, "damage_description": "Cracked windscreen"},
        format="json",
    )
    assert resp.status_code == 200, resp.data
    vehicle.refresh_from_db()
    assert vehicle.status == Vehicle.Status.DAMAGED
    assert vehicle.availability is False
    assert "Cracked windscreen" in vehicle.notes


@pytest.mark.parametrize("level,expected", [(45, 200), (101, 400), (-1, 400)])
def test_fuel_update(auth_client, admin_user, vehicle, level, expected):
    url = reverse("vehicle-update-fuel", kwargs={"pk": vehicle.pk})

    resp = auth_client(admin_user).patch(url, {"fuel_level": level}, format="json")

    assert resp.status_code == expected
    vehicle.refresh_from_db()
    assert vehicle.fuel_level == (level if expected == 200 else 100)


def test_mileage_cannot_go_backwards(auth_client, admin_user, vehicle):
    url = reverse("vehicle-update-mileage", kwargs={"pk": vehicle.pk})
    client = auth_client(admin_user)

    assert client.patch(url, {"mileage": 12000}, format="json").status_code == 200
    resp = client.patch(url, {"mileage": 11000}, format="json")

    assert resp.status_code == 400
    assert "mileage" in resp.data["errors"]
    vehicle.refresh_from_db()
    assert vehicle.mileage == 12000


def test_mark_cleaned(auth_client, admin_user, vehicle):
    url = reverse("vehicle-mark-cleaned", kwargs={"pk": vehicle.pk})

    resp = auth_client(admin_user).patch(url)

    assert resp.status_code == 200
    assert resp.data["data"]["last_cleaned_at"] is not None
    vehicle.refresh_from_db()
    assert vehicle.last_cleaned_at is not None


def test_renter_cannot_update_condition(auth_client, renter_user, vehicle):
    url = reverse("vehicle-update-fuel", kwargs={"pk": vehicle.pk})

    resp = auth_client(renter_user).patch(url, {"fuel_level": 5}, format="json")

    assert resp.status_code == 403
