from decimal import Decimal

import pytest
import stripe
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.urls import reverse

from bookings.models import Booking
from payments import services, stripe_api
from payments.errors import PaymentConfigurationError
from payments.models import Payment
from payments.stripe_api import StripeCardGateway, _from_cents, _to_cents

pytestmark = pytest.mark.django_db


class DummyIntent:
    def __init__(self, intent_id: str):
        self.id = intent_id
        self.client_secret = f"{intent_id}_secret"


def install_event(monkeypatch, event):
    def fake_construct_event(payload, sig_header, secret):
        assert secret == "whsec_test_dummy"
        return event

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)


def post_webhook(api_client, body=b"{}"):
    return api_client.post(
        reverse("payments:stripe_webhook"),
        data=body,
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
    )


@pytest.mark.parametrize(
    "amount,cents",
    [
        (Decimal("19.99"), 1999),
        (Decimal("0.29"), 29),
        ("150.00", 15000),
        (Decimal("0.005"), 1),
        (Decimal("0.004"), 0),
        (1, 100),
    ],
)
def test_to_cents_is_exact(amount, cents):
    assert _to_cents(amount) == cents


def test_from_cents():
    assert _from_cents(1999) == Decimal("19.99")
    assert _from_cents(None) == Decimal("0.00")


def test_create_intent_payload(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return DummyIntent("pi_123")

    monkeypatch.setattr(
        stripe_api.stripe,
        "PaymentIntent",
        type("MockPI", (), {"create": staticmethod(fake_create)}),
    )

    intent = StripeCardGateway().create_intent(
        amount=Decimal("19.99"),
        currency="USD",
        booking_id=12,
        metadata={"payment_id": 3},
        idempotency_key="payment:3:intent:1999:usd",
    )

    assert captured["amount"] == 1999
    assert captured["currency"] == "usd"
    assert captured["automatic_payment_methods"] == {"enabled": True}
    assert captured["metadata"] == {"payment_id": "3", "booking_id": "12"}
    assert captured["idempotency_key"] == "payment:3:intent:1999:usd"
    assert intent.intent_id == "pi_123"
    assert intent.client_secret == "pi_123_secret"
    assert intent.amount_cents == 1999


def test_create_intent_rejects_zero_amount():
    with pytest.raises(ValidationError) as excinfo:
        StripeCardGateway().create_intent(amount=Decimal("0.00"), currency="usd", booking_id=1)
    assert excinfo.value.message_dict["amount"] == ["Amount must be greater than zero."]


def test_missing_secret_key_is_configuration_error(settings):
    settings.STRIPE_SECRET_KEY = ""
    with pytest.raises(PaymentConfigurationError):
        StripeCardGateway().create_intent(amount=Decimal("10"), currency="usd", booking_id=1)


def test_create_intent_endpoint(auth_client, renter_user, booking_factory, monkeypatch):
    booking = booking_factory(total_amount=Decimal("19.99"))
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return DummyIntent(f"pi_{len(calls)}")

    monkeypatch.setattr(
        stripe_api.stripe,
        "PaymentIntent",
        type("MockPI", (), {"create": staticmethod(fake_create)}),
    )
    client = auth_client(renter_user)
    url = reverse("payments:stripe_create_intent")

    first = client.post(url, {"booking_id": booking.id}, format="json")
    second = client.post(url, {"booking_id": booking.id}, format="json")

    assert first.status_code == 200, first.data
    data = first.data["data"]
    assert data["amount_cents"] == 1999
    assert data["amount"] == "19.99"
    assert data["currency"] == "usd"
    assert data["client_secret"] == "pi_1_secret"
    assert second.data["data"]["payment_id"] == data["payment_id"]
    assert calls[0]["idempotency_key"] == calls[1]["idempotency_key"]
    payment = Payment.objects.get(pk=data["payment_id"])
    assert payment.provider == Payment.Provider.CARD
    assert payment.status == Payment.Status.PENDING
    assert payment.external_id == "pi_2"


def test_create_intent_requires_authentication(api_client, booking_factory):
    booking = booking_factory()
    resp = api_client.post(
        reverse("payments:stripe_create_intent"), {"booking_id": booking.id}, format="json"
    )
    assert resp.status_code == 401


def test_create_intent_card_declined(auth_client, renter_user, booking_factory, monkeypatch):
    booking = booking_factory()

    def fake_create(**kwargs):
        raise stripe.error.CardError("Your card was declined.", param="card", code="card_declined")

    monkeypatch.setattr(
        stripe_api.stripe,
        "PaymentIntent",
        type("MockPI", (), {"create": staticmethod(fake_create)}),
    )

    resp = auth_client(renter_user).post(
        reverse("payments:stripe_create_intent"), {"booking_id": booking.id}, format="json"
    )

    assert resp.status_code == 400
    assert resp.data["success"] is False


def test_create_intent_unknown_booking(auth_client, renter_user):
    resp = auth_client(renter_user).post(
        reverse("payments:stripe_create_intent"), {"booking_id": 9999}, format="json"
    )
    assert resp.status_code == 404


def test_checkout_session_endpoint(auth_client, renter_user, booking_factory, monkeypatch, settings):
    settings.FRONTEND_ORIGIN = "https://rent.example.com/"
    booking = booking_factory()
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return type("Session", (), {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"})()

    monkeypatch.setattr(stripe_api.stripe.checkout.Session, "create", staticmethod(fake_create))

    resp = auth_client(renter_user).post(
        reverse("payments:stripe_checkout_session"), {"booking_id": booking.id}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["data"]["session_id"] == "cs_test_1"
    assert resp.data["data"]["url"].startswith("https://checkout.stripe.com/")
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 15000
    assert captured["line_items"][0]["price_data"]["product_data"]["name"] == "Vehicle Rental"
    assert captured["success_url"] == (
        "https://rent.example.com/payment/success?session_id={CHECKOUT_SESSION_ID}"
        f"&booking_id={booking.id}"
    )
    assert captured["cancel_url"] == f"https://rent.example.com/payment/cancel?booking_id={booking.id}"
    payment = Payment.objects.get(pk=resp.data["data"]["payment_id"])
    assert payment.external_id == "cs_test_1"
    assert payment.metadata["checkout_session_id"] == "cs_test_1"


def test_webhook_bad_signature(api_client, booking_factory, monkeypatch):
    booking = booking_factory()

    def fake_construct_event(payload, sig_header, secret):
        raise stripe.error.SignatureVerificationError("No signatures found", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)

    resp = post_webhook(api_client)

    assert resp.status_code == 500
    assert resp.data["success"] is False
    assert resp.data["data"] is None
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.PENDING


def test_webhook_without_secret(api_client, settings):
    settings.STRIPE_WEBHOOK_SECRET = ""
    resp = post_webhook(api_client)
    assert resp.status_code == 500


def test_webhook_generic_message_outside_debug(api_client, settings, monkeypatch):
    settings.DEBUG = False

    def fake_construct_event(payload, sig_header, secret):
        raise ValueError("Invalid payload")

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)

    resp = post_webhook(api_client)

    assert resp.status_code == 500
    assert resp.data == {"success": False, "message": "Internal server error", "data": None}


def test_webhook_ignores_unknown_event(api_client, monkeypatch):
    install_event(monkeypatch, {"id": "evt_1", "type": "customer.created", "data": {"object": {}}})

    resp = post_webhook(api_client)

    assert resp.status_code == 200
    assert resp.data == {"received": True}


def test_webhook_intent_succeeded_completes_payment(api_client, booking_factory, payment_factory, monkeypatch):
    booking = booking_factory()
    payment = payment_factory(
        booking, provider=Payment.Provider.CARD, currency="usd", external_id="pi_abc"
    )
    install_event(
        monkeypatch,
        {
            "id": "evt_2",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_abc",
                    "amount_received": 15000,
                    "latest_charge": "ch_1",
                    "metadata": {"booking_id": str(booking.id)},
                }
            },
        },
    )

    resp = post_webhook(api_client)

    assert resp.data == {"received": True}
    payment.refresh_from_db()
    assert payment.status == Payment.Status.COMPLETED
    assert payment.metadata["charge_id"] == "ch_1"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CONFIRMED


def test_webhook_intent_succeeded_without_local_payment(api_client, booking_factory, monkeypatch):
    booking = booking_factory()
    install_event(
        monkeypatch,
        {
            "id": "evt_3",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_new",
                    "amount_received": 12345,
                    "currency": "usd",
                    "metadata": {"booking_id": str(booking.id)},
                }
            },
        },
    )

    post_webhook(api_client)

    payment = Payment.objects.get(booking=booking)
    assert payment.status == Payment.Status.COMPLETED
    assert payment.amount == Decimal("123.45")
    assert payment.external_id == "pi_new"


def test_provider_ids_are_unique_per_provider(booking_factory, payment_factory):
    booking = booking_factory()
    payment_factory(booking, provider=Payment.Provider.CARD, external_id="pi_dup")
    payment_factory(booking, provider=Payment.Provider.CARD)
    payment_factory(booking, provider=Payment.Provider.CARD)
    payment_factory(booking, provider=Payment.Provider.MPESA, external_id="pi_dup")

    with pytest.raises(IntegrityError), transaction.atomic():
        payment_factory(booking, provider=Payment.Provider.CARD, external_id="pi_dup")

    assert Payment.objects.filter(provider=Payment.Provider.CARD, external_id="pi_dup").count() == 1


def test_event_for_already_recorded_intent_reuses_row(booking_factory, payment_factory):
    booking = booking_factory()
    existing = payment_factory(
        booking,
        provider=Payment.Provider.CARD,
        status=Payment.Status.COMPLETED,
        external_id="pi_raced",
    )

    payment = services._create_card_payment_from_event(
        {"booking_id": str(booking.id)}, amount_cents=15000, currency="usd", external_id="pi_raced"
    )

    assert payment.pk == existing.pk
    assert Payment.objects.filter(booking=booking).count() == 1


def test_webhook_failed_intent_without_record_is_a_no_op(api_client, monkeypatch):
    install_event(
        monkeypatch,
        {
            "id": "evt_4",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_unknown", "metadata": {}}},
        },
    )

    resp = post_webhook(api_client)

    assert resp.data == {"received": True}
    assert Payment.objects.count() == 0


def test_webhook_failed_intent_records_reason(api_client, booking_factory, payment_factory, monkeypatch):
    booking = booking_factory()
    payment = payment_factory(booking, provider=Payment.Provider.CARD, external_id="pi_fail")
    install_event(
        monkeypatch,
        {
            "id": "evt_5",
            "type": "payment_intent.payment_failed",
            "data": {
                "object": {
                    "id": "pi_fail",
                    "metadata": {},
                    "last_payment_error": {"message": "Your card has insufficient funds.", "decline_code": "insufficient_funds"},
                }
            },
        },
    )

    post_webhook(api_client)

    payment.refresh_from_db()
    assert payment.status == Payment.Status.FAILED
    assert payment.failure_reason == "Your card has insufficient funds."
    assert payment.metadata["decline_code"] == "insufficient_funds"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.PENDING


def test_webhook_checkout_completed(api_client, booking_factory, payment_factory, monkeypatch):
    booking = booking_factory()
    payment = payment_factory(booking, provider=Payment.Provider.CARD, external_id="cs_test_9")
    install_event(
        monkeypatch,
        {
            "id": "evt_6",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_9",
                    "payment_intent": "pi_from_session",
                    "payment_status": "paid",
                    "metadata": {"booking_id": str(booking.id), "payment_id": str(payment.id)},
                    "customer_details": {"email": "renter@example.com"},
                }
            },
        },
    )

    post_webhook(api_client)

    payment.refresh_from_db()
    assert payment.status == Payment.Status.COMPLETED
    assert payment.external_id == "pi_from_session"
    assert payment.metadata["checkout_session_id"] == "cs_test_9"
    assert Booking.objects.get(pk=booking.pk).status == Booking.Status.CONFIRMED


def test_webhook_unpaid_checkout_is_ignored(api_client, booking_factory, payment_factory, monkeypatch):
    booking = booking_factory()
    payment = payment_factory(booking, provider=Payment.Provider.CARD, external_id="cs_test_10")
    install_event(
        monkeypatch,
        {
            "id": "evt_7",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_test_10", "payment_status": "unpaid", "metadata": {}}},
        },
    )

    post_webhook(api_client)

    assert Payment.objects.get(pk=payment.pk).status == Payment.Status.PENDING


def test_refund_calls_stripe(monkeypatch):
    captured = {}

    def fake_refund(**kwargs):
        captured.update(kwargs)
        return type("Refund", (), {"id": "re_1", "status": "succeeded"})()

    monkeypatch.setattr(stripe_api.stripe.Refund, "create", staticmethod(fake_refund))

    result = StripeCardGateway().refund(intent_id="pi_abc", metadata={"payment_id": 1})

    assert captured["payment_intent"] == "pi_abc"
    assert captured["metadata"] == {"payment_id": "1"}
    assert result == {"refund_id": "re_1", "status": "succeeded"}
