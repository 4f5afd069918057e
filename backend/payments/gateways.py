"""
Narrow capability interfaces over the payment providers.

Services depend on these protocols rather than on the Stripe SDK or the
Daraja HTTP API directly, so tests can hand in a fake gateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True)
class CardIntent:
    intent_id: str
    client_secret: str
    amount_cents: int
    currency: str


@dataclass(frozen=True)
class PushResult:
    checkout_request_id: str
    merchant_request_id: str = ""
    response_description: str = ""
    customer_message: str = ""


@dataclass(frozen=True)
class QueryResult:
    """Outcome of a mobile-money status query in internal vocabulary."""

    status: str
    result_code: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class CardGateway(Protocol):
    def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        booking_id: int,
        metadata: Optional[Mapping[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> CardIntent: ...

    def verify_webhook(self, payload: bytes, signature: str) -> Mapping[str, Any]: ...


class MobileMoneyGateway(Protocol):
    def authenticate(self) -> str: ...

    def push(
        self,
        *,
        phone_number: str,
        amount: Decimal,
        payment_id: int,
        description: str = "",
    ) -> PushResult: ...

    def query(self, checkout_request_id: str) -> QueryResult: ...


def get_card_gateway() -> CardGateway:
    from .stripe_api import StripeCardGateway

    return StripeCardGateway()


def get_mobile_money_gateway() -> MobileMoneyGateway:
    from .mpesa import MpesaGateway, build_token_cache

    return MpesaGateway(token_cache=build_token_cache())
