from decimal import Decimal

import pytest

from payments import services
from payments.gateways import CardIntent, PushResult, QueryResult
from payments.models import Payment
from payments.mpesa import QueryStatus
from payments.stripe_api import _to_cents


class FakeMobileMoneyGateway:
    """Records pushes and answers status queries from ``query_results``."""

    def __init__(self):
        self.pushes = []
        self.queries = []
        self.query_results = {}

    def authenticate(self):
        return "fake-token"

    def push(self, *, phone_number, amount, payment_id, description=""):
        self.pushes.append(
            {
                "phone_number": phone_number,
                "amount": amount,
                "payment_id": payment_id,
                "description": description,
            }
        )
        return PushResult(
            checkout_request_id=f"ws_CO_{len(self.pushes)}",
            merchant_request_id=f"mr-{len(self.pushes)}",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing",
        )

    def query(self, checkout_request_id):
        self.queries.append(checkout_request_id)
        return self.query_results.get(
            checkout_request_id,
            QueryResult(status=QueryStatus.PENDING, result_code="500.001.1001"),
        )


class FakeCardGateway:
    def __init__(self):
        self.intents = []
        self.refunds = []

    def create_intent(self, *, amount, currency, booking_id, metadata=None, idempotency_key=None):
        self.intents.append(
            {
                "amount": amount,
                "currency": currency,
                "booking_id": booking_id,
                "metadata": dict(metadata or {}),
                "idempotency_key": idempotency_key,
            }
        )
        return CardIntent(
            intent_id=f"pi_{len(self.intents)}",
            client_secret=f"pi_{len(self.intents)}_secret",
            amount_cents=_to_cents(amount),
            currency=currency,
        )

    def verify_webhook(self, payload, signature):
        raise NotImplementedError

    def refund(self, *, intent_id, amount=None, metadata=None):
        self.refunds.append({"intent_id": intent_id, "metadata": metadata})
        return {"refund_id": f"re_{len(self.refunds)}", "status": "succeeded"}


@pytest.fixture
def fake_mpesa(monkeypatch):
    gateway = FakeMobileMoneyGateway()
    monkeypatch.setattr(services, "get_mobile_money_gateway", lambda: gateway)
    return gateway


@pytest.fixture
def fake_card(monkeypatch):
    gateway = FakeCardGateway()
    monkeypatch.setattr(services, "get_card_gateway", lambda: gateway)
    monkeypatch.setattr(services, "StripeCardGateway", lambda: gateway)
    return gateway


@pytest.fixture
def payment_factory():
    def _create(booking, **overrides):
        values = {
            "booking": booking,
            "user": booking.user,
            "amount": Decimal("150.00"),
            "currency": "kes",
            "provider": Payment.Provider.MPESA,
            "status": Payment.Status.PENDING,
        }
        values.update(overrides)
        return Payment.objects.create(**values)

    return _create
