from decimal import Decimal

import pytest
from django.urls import reverse

from bookings.models import Booking
from payments.models import Payment

pytestmark = pytest.mark.django_db


def detail_url(payment, action=None):
    if action:
        return reverse(f"payments:payment-{action}", kwargs={"pk": payment.pk})
    return reverse("payments:payment-detail", kwargs={"pk": payment.pk})


def test_config_is_public(api_client):
    resp = api_client.get(reverse("payments:config"))

    assert resp.status_code == 200
    data = resp.data["data"]
    assert data["stripe_publishable_key"] == "pk_test_dummy"
    assert data["providers"] == ["card", "mpesa", "cash", "bank_transfer"]


def test_config_hides_unconfigured_providers(api_client, settings):
    settings.MPESA_CONSUMER_KEY = ""
    resp = api_client.get(reverse("payments:config"))
    assert "mpesa" not in resp.data["data"]["providers"]


def test_list_is_staff_only(auth_client, renter_user, support_user, booking_factory, payment_factory):
    payment_factory(booking_factory())

    assert auth_client(renter_user).get(reverse("payments:payment-list")).status_code == 403
    resp = auth_client(support_user).get(reverse("payments:payment-list"))
    assert resp.status_code == 200
    assert resp.data["pagination"]["total"] == 1


def test_renter_sees_only_own_payments(
    auth_client, renter_user, other_user, booking_factory, payment_factory
):
    own = payment_factory(booking_factory())
    foreign = payment_factory(booking_factory(user=other_user))
    client = auth_client(renter_user)

    mine = client.get(reverse("payments:payment-mine"))
    assert [row["id"] for row in mine.data["data"]] == [own.id]
    assert client.get(detail_url(own)).status_code == 200
    assert client.get(detail_url(foreign)).status_code == 404


def test_payments_for_booking(auth_client, renter_user, other_user, booking_factory, payment_factory):
    booking = booking_factory()
    payment_factory(booking, status=Payment.Status.FAILED)
    payment_factory(booking)
    url = reverse("payments:payment-for-booking", kwargs={"booking_id": booking.id})

    resp = auth_client(renter_user).get(url)
    assert resp.status_code == 200
    assert len(resp.data["data"]) == 2
    assert auth_client(other_user).get(url).status_code == 404


def test_admin_records_cash_payment(auth_client, admin_user, booking_factory):
    booking = booking_factory()

    resp = auth_client(admin_user).post(
        reverse("payments:payment-list"),
        {
            "booking_id": booking.id,
            "provider": "cash",
            "status": "completed",
            "reference": "RCPT-0091",
        },
        format="json",
    )

    assert resp.status_code == 201, resp.data
    assert resp.data["message"] == "Payment recorded"
    data = resp.data["data"]
    assert data["status"] == Payment.Status.COMPLETED
    assert data["amount"] == "150.00"
    assert data["external_id"] == "RCPT-0091"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CONFIRMED


def test_manual_payment_rejects_card_provider(auth_client, admin_user, booking_factory):
    booking = booking_factory()
    resp = auth_client(admin_user).post(
        reverse("payments:payment-list"),
        {"booking_id": booking.id, "provider": "card"},
        format="json",
    )
    assert resp.status_code == 400


def test_support_cannot_record_payments(auth_client, support_user, booking_factory):
    booking = booking_factory()
    resp = auth_client(support_user).post(
        reverse("payments:payment-list"),
        {"booking_id": booking.id, "provider": "cash"},
        format="json",
    )
    assert resp.status_code == 403


def test_admin_marks_pending_payment_completed(auth_client, admin_user, booking_factory, payment_factory):
    booking = booking_factory()
    payment = payment_factory(booking, provider=Payment.Provider.BANK_TRANSFER)
    client = auth_client(admin_user)

    first = client.patch(detail_url(payment, "set-status"), {"status": "completed"}, format="json")
    second = client.patch(detail_url(payment, "set-status"), {"status": "completed"}, format="json")

    assert first.status_code == 200
    assert first.data["message"] == "Payment status updated"
    assert second.data["message"] == "Payment status unchanged"
    payment.refresh_from_db()
    assert payment.metadata["manually_reconciled_by"] == admin_user.id
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CONFIRMED


def test_refund_of_pending_payment_is_rejected(auth_client, admin_user, booking_factory, payment_factory):
    payment = payment_factory(booking_factory())

    resp = auth_client(admin_user).post(detail_url(payment, "refund"), {}, format="json")

    assert resp.status_code == 400
    assert resp.data["message"] == "Only completed payments can be refunded."


def test_refund_card_payment(auth_client, admin_user, booking_factory, payment_factory, fake_card):
    booking = booking_factory(status=Booking.Status.CONFIRMED)
    payment = payment_factory(
        booking,
        provider=Payment.Provider.CARD,
        status=Payment.Status.COMPLETED,
        external_id="pi_paid",
    )

    resp = auth_client(admin_user).post(
        detail_url(payment, "refund"), {"reason": "vehicle broke down"}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["data"]["status"] == Payment.Status.REFUNDED
    assert fake_card.refunds[0]["intent_id"] == "pi_paid"
    payment.refresh_from_db()
    assert payment.metadata["refund_id"] == "re_1"
    assert payment.metadata["refund_reason"] == "vehicle broke down"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CANCELLED


def test_refund_mpesa_payment_is_flagged_for_manual_settlement(
    auth_client, admin_user, booking_factory, payment_factory, fake_card
):
    booking = booking_factory(status=Booking.Status.CONFIRMED)
    payment = payment_factory(booking, status=Payment.Status.COMPLETED)

    resp = auth_client(admin_user).patch(
        detail_url(payment, "set-status"), {"status": "refunded"}, format="json"
    )

    assert resp.status_code == 200
    payment.refresh_from_db()
    assert payment.status == Payment.Status.REFUNDED
    assert payment.metadata["manual_refund_required"] is True
    assert fake_card.refunds == []


def test_statistics(auth_client, admin_user, booking_factory, payment_factory):
    booking = booking_factory()
    payment_factory(booking, status=Payment.Status.COMPLETED, amount=Decimal("150.00"))
    payment_factory(booking, status=Payment.Status.FAILED, amount=Decimal("150.00"))
    payment_factory(
        booking, provider=Payment.Provider.CASH, status=Payment.Status.PENDING, amount=Decimal("40.00")
    )

    resp = auth_client(admin_user).get(reverse("payments:payment-statistics"))

    data = resp.data["data"]
    assert data["total"] == 3
    assert data["collected"] == Decimal("150.00")
    assert data["outstanding"] == Decimal("40.00")
    assert data["by_status"]["failed"] == 1
    assert data["collected_by_provider"]["mpesa"] == Decimal("150.00")
    assert data["collected_by_provider"]["card"] == Decimal("0.00")


def test_pending_queue(auth_client, support_user, booking_factory, payment_factory):
    booking = booking_factory()
    pending = payment_factory(booking)
    payment_factory(booking, status=Payment.Status.FAILED)

    resp = auth_client(support_user).get(reverse("payments:payment-pending"))

    assert [row["id"] for row in resp.data["data"]] == [pending.id]


def test_deleting_user_with_payments_conflicts(auth_client, admin_user, renter_user, booking_factory, payment_factory):
    payment_factory(booking_factory())

    resp = auth_client(admin_user).delete(reverse("users:user-detail", kwargs={"pk": renter_user.pk}))

    assert resp.status_code == 409
    assert resp.data["success"] is False
