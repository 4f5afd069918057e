from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from bookings.models import Booking

pytestmark = pytest.mark.django_db

LIST_URL = reverse("bookings:booking-list")


def detail_url(booking, action=None):
    if action:
        return reverse(f"bookings:booking-{action}", kwargs={"pk": booking.pk})
    return reverse("bookings:booking-detail", kwargs={"pk": booking.pk})


def future_range(days_ahead=1, length=2):
    start = timezone.now() + timedelta(days=days_ahead)
    return start.isoformat(), (start + timedelta(days=length)).isoformat()


def test_create_booking(auth_client, renter_user, vehicle):
    start, end = future_range()

    resp = auth_client(renter_user).post(
        LIST_URL,
        {"vehicle_id": vehicle.id, "start_at": start, "end_at": end, "notes": "airport pickup"},
        format="json",
    )

    assert resp.status_code == 201, resp.data
    assert resp.data["success"] is True
    assert resp.data["message"] == "Booking created successfully"
    data = resp.data["data"]
    assert data["status"] == Booking.Status.PENDING
    assert data["total_amount"] == "100.00"
    assert data["user"] == renter_user.id
    assert data["vehicle_label"] == "Toyota Corolla (KDA 123A)"


def test_create_booking_requires_authentication(api_client, vehicle):
    start, end = future_range()
    resp = api_client.post(
        LIST_URL, {"vehicle_id": vehicle.id, "start_at": start, "end_at": end}, format="json"
    )
    assert resp.status_code == 401
    assert resp.data["success"] is False


def test_create_overlapping_booking(auth_client, renter_user, other_user, vehicle):
    start, end = future_range()
    auth_client(renter_user).post(
        LIST_URL, {"vehicle_id": vehicle.id, "start_at": start, "end_at": end}, format="json"
    )

    resp = auth_client(other_user).post(
        LIST_URL, {"vehicle_id": vehicle.id, "start_at": start, "end_at": end}, format="json"
    )

    assert resp.status_code == 400
    assert resp.data == {
        "success": False,
        "message": "Vehicle is already booked for the selected dates",
        "errors": {"non_field_errors": ["Vehicle is already booked for the selected dates"]},
    }


def test_create_booking_with_end_before_start(auth_client, renter_user, vehicle):
    start, end = future_range()
    resp = auth_client(renter_user).post(
        LIST_URL, {"vehicle_id": vehicle.id, "start_at": end, "end_at": start}, format="json"
    )
    assert resp.status_code == 400
    assert resp.data["message"] == "Return date must be after booking date."


def test_create_booking_for_missing_vehicle(auth_client, renter_user):
    start, end = future_range()
    resp = auth_client(renter_user).post(
        LIST_URL, {"vehicle_id": 9999, "start_at": start, "end_at": end}, format="json"
    )
    assert resp.status_code == 404


def test_renter_only_sees_own_bookings(auth_client, renter_user, other_user, booking_factory):
    own = booking_factory()
    foreign = booking_factory(user=other_user, start_at=timezone.now() + timedelta(days=20))
    client = auth_client(renter_user)

    resp = client.get(LIST_URL)

    assert [row["id"] for row in resp.data["data"]] == [own.id]
    assert resp.data["pagination"]["total"] == 1
    assert client.get(detail_url(foreign)).status_code == 404


def test_support_sees_all_bookings(auth_client, support_user, other_user, booking_factory):
    booking_factory()
    booking_factory(user=other_user, start_at=timezone.now() + timedelta(days=20))

    resp = auth_client(support_user).get(LIST_URL)

    assert resp.data["pagination"]["total"] == 2


def test_owner_reschedules_pending_booking(auth_client, renter_user, booking_factory):
    booking = booking_factory()
    new_end = (booking.start_at + timedelta(days=1)).isoformat()

    resp = auth_client(renter_user).patch(detail_url(booking), {"end_at": new_end}, format="json")

    assert resp.status_code == 200, resp.data
    assert resp.data["data"]["total_amount"] == "50.00"


def test_owner_cancels_booking(auth_client, renter_user, booking_factory):
    booking = booking_factory()

    resp = auth_client(renter_user).post(detail_url(booking, "cancel"))

    assert resp.status_code == 200
    assert resp.data["message"] == "Booking cancelled successfully"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CANCELLED


def test_cancel_completed_booking_is_rejected(auth_client, renter_user, booking_factory):
    booking = booking_factory(status=Booking.Status.COMPLETED)
    resp = auth_client(renter_user).post(detail_url(booking, "cancel"))
    assert resp.status_code == 400
    assert resp.data["message"] == "Cannot cancel a completed booking."


def test_renter_cannot_confirm(auth_client, renter_user, booking_factory):
    booking = booking_factory()
    resp = auth_client(renter_user).post(detail_url(booking, "confirm"))
    assert resp.status_code == 403


def test_admin_confirms_and_completes(auth_client, admin_user, booking_factory):
    booking = booking_factory()
    client = auth_client(admin_user)

    confirm = client.post(detail_url(booking, "confirm"))
    activate = client.post(detail_url(booking, "activate"))
    complete = client.post(detail_url(booking, "complete"))

    assert confirm.status_code == 200
    assert activate.data["data"]["status"] == Booking.Status.ACTIVE
    assert complete.data["data"]["status"] == Booking.Status.COMPLETED


def test_confirm_rejects_colliding_pending_booking(auth_client, admin_user, other_user, booking_factory):
    confirmed = booking_factory(status=Booking.Status.CONFIRMED)
    Booking.objects.create(
        user=other_user,
        vehicle=confirmed.vehicle,
        location=confirmed.location,
        start_at=confirmed.start_at,
        end_at=confirmed.end_at,
        total_amount=confirmed.total_amount,
    )
    pending = Booking.objects.get(user=other_user)

    resp = auth_client(admin_user).post(detail_url(pending, "confirm"))

    assert resp.status_code == 400
    assert Booking.objects.get(pk=pending.pk).status == Booking.Status.PENDING


def test_delete_confirmed_booking_is_rejected(auth_client, admin_user, booking_factory):
    booking = booking_factory(status=Booking.Status.CONFIRMED)

    resp = auth_client(admin_user).delete(detail_url(booking))

    assert resp.status_code == 400
    assert resp.data["message"] == "Cannot delete confirmed or completed bookings."


def test_admin_deletes_pending_booking(auth_client, admin_user, booking_factory):
    booking = booking_factory()

    resp = auth_client(admin_user).delete(detail_url(booking))

    assert resp.status_code == 200
    assert resp.data == {"success": True, "message": "Booking deleted successfully", "data": None}


def test_check_availability_is_public(api_client, booking_factory, vehicle):
    booking = booking_factory()

    resp = api_client.get(
        reverse("bookings:booking-check-availability"),
        {
            "vehicle_id": vehicle.id,
            "start_at": booking.start_at.isoformat(),
            "end_at": booking.end_at.isoformat(),
        },
    )

    assert resp.status_code == 200
    assert resp.data["data"] == {
        "available": False,
        "reason": "Vehicle is already booked for the requested period",
    }


def test_check_availability_requires_vehicle(api_client):
    start, end = future_range()
    resp = api_client.get(
        reverse("bookings:booking-check-availability"), {"start_at": start, "end_at": end}
    )
    assert resp.status_code == 400


def test_statistics_for_staff(auth_client, support_user, renter_user, booking_factory):
    booking_factory()
    booking_factory(status=Booking.Status.CANCELLED)

    assert auth_client(renter_user).get(reverse("bookings:booking-statistics")).status_code == 403
    resp = auth_client(support_user).get(reverse("bookings:booking-statistics"))

    data = resp.data["data"]
    assert data["total"] == 2
    assert data["by_status"]["pending"] == 1
    assert data["by_status"]["cancelled"] == 1


def test_upcoming_lists_confirmed_bookings(auth_client, admin_user, booking_factory):
    soon = booking_factory(status=Booking.Status.CONFIRMED)
    booking_factory(status=Booking.Status.CONFIRMED, start_at=timezone.now() + timedelta(days=30))

    resp = auth_client(admin_user).get(reverse("bookings:booking-upcoming"), {"days": 7})

    assert [row["id"] for row in resp.data["data"]] == [soon.id]
