"""Stripe card payments: PaymentIntents, Checkout Sessions, refunds and webhook verification."""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import stripe
from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from .errors import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentTransientError,
    WebhookSignatureError,
)
from .gateways import CardIntent

logger = logging.getLogger(__name__)

AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True}
CHECKOUT_SESSION_TTL = timedelta(minutes=30)
CHECKOUT_PRODUCT_NAME = "Vehicle Rental"


def _get_stripe_api_key() -> str:
    secret = getattr(settings, "STRIPE_SECRET_KEY", "") or ""
    if not secret:
        raise PaymentConfigurationError("STRIPE_SECRET_KEY is not configured.")
    return secret


def _to_cents(amount: Decimal | int | float | str) -> int:
    """Convert a major-unit amount to integer minor units, rounding half up."""
    cents = (Decimal(str(amount)) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _from_cents(cents: int | str | None) -> Decimal:
    return (Decimal(int(cents or 0)) / Decimal("100")).quantize(Decimal("0.01"))


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto the payment error taxonomy."""
    if isinstance(exc, stripe.error.CardError):
        raise ValidationError({"detail": exc.user_message or "Your card was declined."}) from exc
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise PaymentTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise PaymentConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.error.InvalidRequestError):
        raise PaymentProviderError(exc.user_message or str(exc) or "Invalid payment request.") from exc
    raise PaymentProviderError(exc.user_message or "Stripe payment failure.") from exc


def _stringify_metadata(metadata: Optional[Mapping[str, Any]]) -> dict[str, str]:
    # Stripe metadata values must be strings.
    return {str(key): "" if value is None else str(value) for key, value in (metadata or {}).items()}


class StripeCardGateway:
    """Card gateway backed by the Stripe SDK."""

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key

    def _configure(self) -> None:
        stripe.api_key = self._api_key or _get_stripe_api_key()

    def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        booking_id: int,
        metadata: Optional[Mapping[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> CardIntent:
        amount_cents = _to_cents(amount)
        if amount_cents <= 0:
            raise ValidationError({"amount": ["Amount must be greater than zero."]})
        currency = (currency or settings.STRIPE_DEFAULT_CURRENCY).lower()

        self._configure()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                automatic_payment_methods={**AUTOMATIC_PAYMENT_METHODS_CONFIG},
                metadata=_stringify_metadata({**(metadata or {}), "booking_id": booking_id}),
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        logger.info(
            "stripe: payment intent created",
            extra={"booking_id": booking_id, "intent_id": intent.id, "amount_cents": amount_cents},
        )
        return CardIntent(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=amount_cents,
            currency=currency,
        )

    def create_checkout_session(
        self,
        *,
        amount: Decimal,
        currency: str,
        booking_id: int,
        customer_email: str = "",
        description: str = "",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, str]:
        """Hosted checkout for one booking; returns ``{session_id, url}``."""
        amount_cents = _to_cents(amount)
        if amount_cents <= 0:
            raise ValidationError({"amount": ["Amount must be greater than zero."]})
        currency = (currency or settings.STRIPE_DEFAULT_CURRENCY).lower()
        origin = settings.FRONTEND_ORIGIN.rstrip("/")
        session_metadata = _stringify_metadata({**(metadata or {}), "booking_id": booking_id})

        self._configure()
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {
                                "name": CHECKOUT_PRODUCT_NAME,
                                "description": description or f"Booking #{booking_id}",
                            },
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=customer_email or None,
                success_url=(
                    f"{origin}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"
                    f"&booking_id={booking_id}"
                ),
                cancel_url=f"{origin}/payment/cancel?booking_id={booking_id}",
                expires_at=int((timezone.now() + CHECKOUT_SESSION_TTL).timestamp()),
                metadata=session_metadata,
                payment_intent_data={"metadata": session_metadata},
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        logger.info(
            "stripe: checkout session created",
            extra={"booking_id": booking_id, "session_id": session.id},
        )
        return {"session_id": session.id, "url": session.url}

    def verify_webhook(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        """
        Return the verified event for a raw webhook body.

        Nothing downstream may act on a body that fails this check.
        """
        secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "") or ""
        if not secret:
            raise PaymentConfigurationError("STRIPE_WEBHOOK_SECRET is not configured.")
        try:
            return stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=secret,
            )
        except (ValueError, stripe.error.SignatureVerificationError) as exc:
            logger.warning("stripe: webhook signature verification failed")
            raise WebhookSignatureError("Stripe webhook signature verification failed.") from exc

    def refund(
        self,
        *,
        intent_id: str,
        amount: Optional[Decimal] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, str]:
        self._configure()
        params: dict[str, Any] = {
            "payment_intent": intent_id,
            "metadata": _stringify_metadata(metadata),
        }
        if amount is not None:
            params["amount"] = _to_cents(amount)
        try:
            refund = stripe.Refund.create(**params)
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        logger.info("stripe: refund created", extra={"intent_id": intent_id, "refund_id": refund.id})
        return {"refund_id": refund.id, "status": getattr(refund, "status", "") or ""}
