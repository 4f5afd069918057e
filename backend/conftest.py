"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking
from locations.models import Location
from payments import mpesa
from vehicles.models import Vehicle, VehicleSpecification

User = get_user_model()
PASSWORD = "testpass-123"


def _create_user(*, username: str, role: str = User.Role.USER, **extra) -> User:
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password=PASSWORD,
        role=role,
        **extra,
    )


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def auth_client():
    """Return a client authenticated as the given user via force_authenticate."""

    def _build(user):
        client = APIClient()
        client.force_authenticate(user)
        return client

    return _build


@pytest.fixture
def renter_user(db):
    return _create_user(username="renter", first_name="Wanjiru", last_name="Kamau")


@pytest.fixture
def other_user(db):
    return _create_user(username="other")


@pytest.fixture
def admin_user(db):
    return _create_user(username="admin", role=User.Role.ADMIN)


@pytest.fixture
def support_user(db):
    return _create_user(username="support", role=User.Role.SUPPORT_AGENT)


@pytest.fixture
def location(db):
    return Location.objects.create(
        name="Westlands Branch",
        address="Waiyaki Way 12",
        city="Nairobi",
        contact_phone="254712345678",
    )


@pytest.fixture
def other_location(db):
    return Location.objects.create(name="Mombasa Branch", address="Moi Avenue 3", city="Mombasa")


@pytest.fixture
def specification(db):
    return VehicleSpecification.objects.create(
        manufacturer="Toyota",
        model="Corolla",
        year=2022,
        fuel_type=VehicleSpecification.FuelType.PETROL,
        transmission=VehicleSpecification.Transmission.AUTOMATIC,
        seating_capacity=5,
        features=["air_conditioning", "bluetooth"],
    )


@pytest.fixture
def vehicle(specification, location):
    return Vehicle.objects.create(
        specification=specification,
        location=location,
        rental_rate=Decimal("50.00"),
        license_plate="KDA 123A",
    )


@pytest.fixture
def booking_factory(renter_user, vehicle):
    """Create bookings directly, bypassing the date checks of the domain layer."""

    def _create(
        *,
        start_at=None,
        end_at=None,
        status=Booking.Status.PENDING,
        user=None,
        vehicle_obj=None,
        total_amount=Decimal("150.00"),
    ) -> Booking:
        start_at = start_at or timezone.now() + timedelta(days=2)
        end_at = end_at or start_at + timedelta(days=3)
        target = vehicle_obj or vehicle
        return Booking.objects.create(
            user=user or renter_user,
            vehicle=target,
            location=target.location,
            start_at=start_at,
            end_at=end_at,
            total_amount=total_amount,
            status=status,
        )

    return _create


@pytest.fixture(autouse=True)
def _reset_mpesa_token_cache():
    mpesa._memory_token_cache.clear()
    yield
    mpesa._memory_token_cache.clear()
