"""Payment flows: starting provider attempts and turning provider results into reconciliations."""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from django.conf import settings
from django.core.exceptions import PermissionDenied, ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.http import Http404
from django.utils import timezone

from bookings.models import Booking
from core.exceptions import InternalServiceError
from core.permissions import is_staff_member
from core.phone import normalize_phone

from .gateways import CardGateway, MobileMoneyGateway, get_card_gateway, get_mobile_money_gateway
from .models import Payment
from .mpesa import QueryStatus, parse_callback
from .reconciliation import REFUND_NOT_ALLOWED_MESSAGE, ReconcileResult, reconcile
from .stripe_api import StripeCardGateway, _from_cents, _to_cents

logger = logging.getLogger(__name__)

MPESA_CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}

QUERY_STATUS_TO_PAYMENT = {
    QueryStatus.COMPLETED: Payment.Status.COMPLETED,
    QueryStatus.CANCELLED: Payment.Status.CANCELLED,
    QueryStatus.TIMEOUT: Payment.Status.FAILED,
    QueryStatus.FAILED: Payment.Status.FAILED,
}


def _parse_id(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _get_booking(booking_id: Any) -> Booking:
    booking = (
        Booking.objects.select_related("user", "vehicle")
        .filter(pk=_parse_id(booking_id))
        .first()
    )
    if booking is None:
        raise Http404("Booking not found")
    return booking


def _assert_payable(booking: Booking, user) -> None:
    if user is not None and not is_staff_member(user) and booking.user_id != user.id:
        raise PermissionDenied("You can only pay for your own bookings.")
    if booking.status in (Booking.Status.CANCELLED, Booking.Status.COMPLETED):
        raise ValidationError({"booking": ["Cannot pay for a cancelled or completed booking."]})
    if booking.payments.filter(status=Payment.Status.COMPLETED).exists():
        raise ValidationError({"booking": ["Booking is already paid."]})


def _resolve_amount(booking: Booking, amount: Optional[Decimal]) -> Decimal:
    value = Decimal(str(amount)) if amount is not None else booking.total_amount
    if value <= 0:
        raise ValidationError({"amount": ["Amount must be greater than zero."]})
    return value.quantize(Decimal("0.01"))


def _reuse_or_create_pending(
    booking: Booking,
    *,
    provider: str,
    amount: Decimal,
    currency: str,
    phone_number: str = "",
) -> Payment:
    """
    Return the pending attempt for (booking, provider), creating one if needed.

    A pending attempt is reused so a double-submitted "pay" never produces two
    rows; its amount follows the latest request.
    """
    with transaction.atomic():
        payment = (
            Payment.objects.select_for_update()
            .filter(booking=booking, provider=provider, status=Payment.Status.PENDING)
            .order_by("-created_at")
            .first()
        )
        if payment is None:
            payment = Payment.objects.create(
                booking=booking,
                user=booking.user,
                provider=provider,
                amount=amount,
                currency=currency,
                phone_number=phone_number,
            )
            logger.info(
                "payments: attempt created",
                extra={"payment_id": payment.id, "booking_id": booking.id, "provider": provider},
            )
            return payment

        changed = []
        if payment.amount != amount:
            payment.amount = amount
            changed.append("amount")
        if payment.currency != currency:
            payment.currency = currency
            changed.append("currency")
        if phone_number and payment.phone_number != phone_number:
            payment.phone_number = phone_number
            changed.append("phone_number")
        if changed:
            payment.save(update_fields=changed + ["updated_at"])
        logger.info(
            "payments: reusing pending attempt",
            extra={"payment_id": payment.id, "booking_id": booking.id, "updated": changed},
        )
        return payment


# --- card ---


def initiate_card_payment(
    *,
    booking_id: Any,
    user,
    amount: Optional[Decimal] = None,
    currency: str = "",
    metadata: Optional[Mapping[str, Any]] = None,
    gateway: Optional[CardGateway] = None,
) -> dict[str, Any]:
    booking = _get_booking(booking_id)
    _assert_payable(booking, user)
    amount = _resolve_amount(booking, amount)
    currency = (currency or settings.STRIPE_DEFAULT_CURRENCY).lower()

    payment = _reuse_or_create_pending(
        booking, provider=Payment.Provider.CARD, amount=amount, currency=currency
    )
    gateway = gateway or get_card_gateway()
    intent = gateway.create_intent(
        amount=amount,
        currency=currency,
        booking_id=booking.id,
        metadata={**(metadata or {}), "payment_id": payment.id, "user_id": booking.user_id},
        idempotency_key=f"payment:{payment.id}:intent:{_to_cents(amount)}:{currency}",
    )
    payment.external_id = intent.intent_id
    payment.save(update_fields=["external_id", "updated_at"])

    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.intent_id,
        "amount": str(amount),
        "amount_cents": intent.amount_cents,
        "currency": intent.currency,
        "payment_id": payment.id,
    }


def initiate_checkout_session(
    *,
    booking_id: Any,
    user,
    amount: Optional[Decimal] = None,
    currency: str = "",
    gateway: Optional[StripeCardGateway] = None,
) -> dict[str, Any]:
    booking = _get_booking(booking_id)
    _assert_payable(booking, user)
    amount = _resolve_amount(booking, amount)
    currency = (currency or settings.STRIPE_DEFAULT_CURRENCY).lower()

    payment = _reuse_or_create_pending(
        booking, provider=Payment.Provider.CARD, amount=amount, currency=currency
    )
    gateway = gateway or StripeCardGateway()
    session = gateway.create_checkout_session(
        amount=amount,
        currency=currency,
        booking_id=booking.id,
        customer_email=booking.user.email,
        description=(
            f"Booking #{booking.id}: {booking.vehicle.license_plate} "
            f"{booking.start_at:%Y-%m-%d} to {booking.end_at:%Y-%m-%d}"
        ),
        metadata={"payment_id": payment.id, "user_id": booking.user_id},
    )
    payment.external_id = session["session_id"]
    payment.metadata = {**(payment.metadata or {}), "checkout_session_id": session["session_id"]}
    payment.save(update_fields=["external_id", "metadata", "updated_at"])
    return {**session, "payment_id": payment.id}


def _find_card_payment(external_ids: list[str], metadata: Mapping[str, Any]) -> Optional[Payment]:
    card_payments = Payment.objects.filter(provider=Payment.Provider.CARD)
    for external_id in external_ids:
        if external_id:
            payment = card_payments.filter(external_id=external_id).first()
            if payment is not None:
                return payment

    payment_id = _parse_id(metadata.get("payment_id"))
    if payment_id is not None:
        payment = card_payments.filter(pk=payment_id).first()
        if payment is not None:
            return payment

    booking_id = _parse_id(metadata.get("booking_id"))
    if booking_id is not None:
        return (
            card_payments.filter(booking_id=booking_id, status=Payment.Status.PENDING)
            .order_by("-created_at")
            .first()
        )
    return None


def _create_card_payment_from_event(
    metadata: Mapping[str, Any], *, amount_cents: Any, currency: str, external_id: str
) -> Optional[Payment]:
    booking = Booking.objects.filter(pk=_parse_id(metadata.get("booking_id"))).first()
    if booking is None:
        return None
    try:
        with transaction.atomic():
            payment = Payment.objects.create(
                booking=booking,
                user=booking.user,
                provider=Payment.Provider.CARD,
                amount=_from_cents(amount_cents) if amount_cents else booking.total_amount,
                currency=(currency or settings.STRIPE_DEFAULT_CURRENCY).lower(),
                external_id=external_id,
            )
    except IntegrityError:
        # A concurrent delivery of the same event created the row first.
        existing = Payment.objects.filter(
            provider=Payment.Provider.CARD, external_id=external_id
        ).first()
        if existing is None or not external_id:
            raise
        logger.info(
            "stripe: event raced an existing payment",
            extra={"payment_id": existing.id, "external_id": external_id},
        )
        return existing
    logger.info(
        "stripe: created payment for unmatched event",
        extra={"payment_id": payment.id, "booking_id": booking.id, "external_id": external_id},
    )
    return payment


def _on_payment_intent_succeeded(intent: Mapping[str, Any]) -> None:
    intent_id = intent.get("id") or ""
    metadata = intent.get("metadata") or {}
    payment = _find_card_payment([intent_id], metadata)
    if payment is None:
        payment = _create_card_payment_from_event(
            metadata,
            amount_cents=intent.get("amount_received") or intent.get("amount"),
            currency=intent.get("currency") or "",
            external_id=intent_id,
        )
    if payment is None:
        logger.warning("stripe: succeeded intent matches no booking", extra={"intent_id": intent_id})
        return
    reconcile(
        payment,
        Payment.Status.COMPLETED,
        external_id=intent_id,
        metadata={
            "payment_intent_id": intent_id,
            "charge_id": intent.get("latest_charge") or "",
            "amount_received": intent.get("amount_received"),
        },
    )


def _on_payment_intent_failed(intent: Mapping[str, Any]) -> None:
    intent_id = intent.get("id") or ""
    payment = _find_card_payment([intent_id], intent.get("metadata") or {})
    if payment is None:
        logger.info("stripe: failed intent matches no payment", extra={"intent_id": intent_id})
        return
    error = intent.get("last_payment_error") or {}
    reconcile(
        payment,
        Payment.Status.FAILED,
        reason=error.get("message") or "Payment failed",
        metadata={
            "payment_intent_id": intent_id,
            "decline_code": error.get("decline_code") or error.get("code") or "",
        },
    )


def _on_checkout_session_completed(session: Mapping[str, Any]) -> None:
    session_id = session.get("id") or ""
    intent_id = session.get("payment_intent") or ""
    metadata = session.get("metadata") or {}
    if session.get("payment_status") == "unpaid":
        logger.info("stripe: checkout completed without payment", extra={"session_id": session_id})
        return

    payment = _find_card_payment([session_id, intent_id], metadata)
    if payment is None:
        payment = _create_card_payment_from_event(
            metadata,
            amount_cents=session.get("amount_total"),
            currency=session.get("currency") or "",
            external_id=intent_id or session_id,
        )
    if payment is None:
        logger.warning("stripe: checkout session matches no booking", extra={"session_id": session_id})
        return
    reconcile(
        payment,
        Payment.Status.COMPLETED,
        external_id=intent_id or session_id,
        metadata={
            "checkout_session_id": session_id,
            "payment_intent_id": intent_id,
            "customer_email": (session.get("customer_details") or {}).get("email") or "",
        },
    )


STRIPE_EVENT_HANDLERS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "payment_intent.succeeded": _on_payment_intent_succeeded,
    "payment_intent.payment_failed": _on_payment_intent_failed,
    "checkout.session.completed": _on_checkout_session_completed,
}


def handle_stripe_event(event: Mapping[str, Any]) -> bool:
    """Dispatch a verified Stripe event. Returns False for event types we ignore."""
    event_type = event.get("type") or ""
    handler = STRIPE_EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("stripe: ignoring event", extra={"event_type": event_type, "event_id": event.get("id")})
        return False
    data_object = (event.get("data") or {}).get("object") or {}
    handler(data_object)
    return True


# --- mobile money ---


def initiate_mpesa_payment(
    *,
    booking_id: Any,
    user,
    phone_number: str,
    amount: Optional[Decimal] = None,
    description: str = "",
    gateway: Optional[MobileMoneyGateway] = None,
) -> dict[str, Any]:
    phone = normalize_phone(phone_number)
    booking = _get_booking(booking_id)
    _assert_payable(booking, user)
    amount = _resolve_amount(booking, amount)

    payment = _reuse_or_create_pending(
        booking,
        provider=Payment.Provider.MPESA,
        amount=amount,
        currency=settings.MPESA_CURRENCY,
        phone_number=phone,
    )
    gateway = gateway or get_mobile_money_gateway()
    result = gateway.push(
        phone_number=phone,
        amount=amount,
        payment_id=payment.id,
        description=description or f"Vehicle rental booking {booking.id}",
    )
    payment.external_id = result.checkout_request_id
    payment.metadata = {
        **(payment.metadata or {}),
        "merchant_request_id": result.merchant_request_id,
        "checkout_request_id": result.checkout_request_id,
    }
    payment.save(update_fields=["external_id", "metadata", "updated_at"])

    return {
        "payment_id": payment.id,
        "checkout_request_id": result.checkout_request_id,
        "merchant_request_id": result.merchant_request_id,
        "customer_message": result.customer_message,
        "amount": str(amount),
        "phone_number": phone,
    }


def _find_mpesa_payment(checkout_request_id: str) -> Optional[Payment]:
    # Attempts whose push never reached Safaricom keep a blank id and are not addressable.
    if not checkout_request_id:
        return None
    return (
        Payment.objects.select_related("booking")
        .filter(provider=Payment.Provider.MPESA, external_id=checkout_request_id)
        .first()
    )


def handle_mpesa_callback(body: Any) -> dict[str, Any]:
    """
    Reconcile an STK callback and return the acknowledgement body.

    Unknown checkout ids are acknowledged and dropped; the attempt may already
    be reconciled or this may be a stray redelivery.
    """
    callback = parse_callback(body)
    payment = _find_mpesa_payment(callback.checkout_request_id)
    if payment is None:
        logger.warning(
            "mpesa: callback for unknown checkout request",
            extra={"checkout_request_id": callback.checkout_request_id},
        )
        return dict(MPESA_CALLBACK_ACK)

    ids = {
        "merchant_request_id": callback.merchant_request_id,
        "checkout_request_id": callback.checkout_request_id,
    }
    if callback.succeeded:
        reconcile(payment, Payment.Status.COMPLETED, metadata={**callback.items, **ids})
    else:
        reconcile(
            payment,
            Payment.Status.FAILED,
            reason=callback.result_desc or "M-Pesa payment failed.",
            metadata={
                "result_code": callback.result_code,
                "result_desc": callback.result_desc,
                **ids,
            },
        )
    return dict(MPESA_CALLBACK_ACK)


def sync_mpesa_status(
    checkout_request_id: str,
    *,
    user=None,
    gateway: Optional[MobileMoneyGateway] = None,
) -> dict[str, Any]:
    """Query the provider for a pending push and reconcile whatever it reports."""
    payment = _find_mpesa_payment(checkout_request_id)
    if payment is None or (
        user is not None and not is_staff_member(user) and payment.user_id != user.id
    ):
        raise Http404("Payment not found")

    if payment.status != Payment.Status.PENDING:
        return {
            "payment_id": payment.id,
            "status": payment.status,
            "query_status": None,
            "result_code": "",
            "description": "Payment already reconciled.",
            "booking_status": payment.booking.status if payment.booking_id else None,
        }

    gateway = gateway or get_mobile_money_gateway()
    result = gateway.query(checkout_request_id)
    new_status = QUERY_STATUS_TO_PAYMENT.get(result.status)
    if new_status is not None:
        reconcile(
            payment,
            new_status,
            reason="" if new_status == Payment.Status.COMPLETED else result.description,
            metadata={**result.metadata, "query_status": result.status.value},
        )
        payment.refresh_from_db()
        if payment.booking_id:
            payment.booking.refresh_from_db()

    return {
        "payment_id": payment.id,
        "status": payment.status,
        "query_status": result.status.value,
        "result_code": result.result_code,
        "description": result.description,
        "booking_status": payment.booking.status if payment.booking_id else None,
    }


def poll_pending_mpesa(*, older_than: Optional[timedelta] = None, gateway=None) -> int:
    """Query every stale pending push. Returns how many were moved out of pending."""
    older_than = older_than or timedelta(seconds=settings.MPESA_POLL_AFTER_SECONDS)
    cutoff = timezone.now() - older_than
    stale = Payment.objects.filter(
        provider=Payment.Provider.MPESA,
        status=Payment.Status.PENDING,
        created_at__lte=cutoff,
    ).exclude(external_id="")

    gateway = gateway or get_mobile_money_gateway()
    settled = 0
    for payment in stale.iterator():
        try:
            outcome = sync_mpesa_status(payment.external_id, gateway=gateway)
        except (InternalServiceError, ValidationError):
            logger.warning(
                "mpesa: status poll failed",
                exc_info=True,
                extra={"payment_id": payment.id},
            )
            continue
        if outcome["status"] != Payment.Status.PENDING:
            settled += 1
    return settled


# --- records ---


def refund_payment(
    payment_id: Any,
    *,
    reason: str = "",
    actor=None,
    gateway: Optional[StripeCardGateway] = None,
) -> Payment:
    """
    Refund a completed payment and cancel its booking.

    Card refunds go through Stripe; M-Pesa and manual payments are flagged
    for the finance team to settle outside the system.
    """
    payment = Payment.objects.filter(pk=_parse_id(payment_id)).first()
    if payment is None:
        raise Http404("Payment not found")
    if payment.status != Payment.Status.COMPLETED:
        raise ValidationError({"status": [REFUND_NOT_ALLOWED_MESSAGE]})

    metadata: dict[str, Any] = {
        "refund_reason": reason,
        "refund_requested_at": timezone.now().isoformat(),
        "refunded_by": getattr(actor, "id", None),
    }
    if payment.provider == Payment.Provider.CARD:
        if not payment.external_id:
            raise ValidationError({"detail": "Card payment has no Stripe reference to refund."})
        gateway = gateway or StripeCardGateway()
        refund = gateway.refund(
            intent_id=payment.external_id,
            metadata={"payment_id": payment.id, "booking_id": payment.booking_id or ""},
        )
        metadata.update({"refund_id": refund["refund_id"], "refund_status": refund["status"]})
    else:
        metadata["manual_refund_required"] = True

    return reconcile(payment, Payment.Status.REFUNDED, metadata=metadata).payment


def record_manual_payment(
    *,
    booking_id: Any,
    provider: str,
    recorded_by,
    amount: Optional[Decimal] = None,
    currency: str = "",
    reference: str = "",
    status: str = Payment.Status.PENDING,
    notes: str = "",
) -> Payment:
    if provider not in Payment.MANUAL_PROVIDERS:
        raise ValidationError({"provider": ["Only cash and bank transfer payments can be recorded manually."]})
    if status not in (Payment.Status.PENDING, Payment.Status.COMPLETED):
        raise ValidationError({"status": ["Manual payments start as pending or completed."]})

    booking = _get_booking(booking_id)
    amount = _resolve_amount(booking, amount)
    payment = Payment.objects.create(
        booking=booking,
        user=booking.user,
        provider=provider,
        amount=amount,
        currency=(currency or settings.STRIPE_DEFAULT_CURRENCY).lower(),
        external_id=reference,
        metadata={"recorded_by": getattr(recorded_by, "id", None), "notes": notes},
    )
    logger.info(
        "payments: manual payment recorded",
        extra={"payment_id": payment.id, "booking_id": booking.id, "provider": provider},
    )
    if status == Payment.Status.COMPLETED:
        reconcile(payment, Payment.Status.COMPLETED)
    return payment


def update_payment_status(
    payment_id: Any,
    new_status: str,
    *,
    reason: str = "",
    actor=None,
) -> ReconcileResult:
    """Admin reconciliation for attempts whose provider result never arrived."""
    if new_status == Payment.Status.REFUNDED:
        payment = refund_payment(payment_id, reason=reason, actor=actor)
        return ReconcileResult(payment=payment, changed=True)
    payment = Payment.objects.filter(pk=_parse_id(payment_id)).first()
    if payment is None:
        raise Http404("Payment not found")
    return reconcile(
        payment,
        new_status,
        reason=reason,
        metadata={"manually_reconciled_by": getattr(actor, "id", None)},
    )


def payment_statistics() -> dict[str, Any]:
    totals = Payment.objects.aggregate(
        count=Count("id"),
        collected=Sum("amount", filter=Q(status=Payment.Status.COMPLETED)),
        refunded=Sum("amount", filter=Q(status=Payment.Status.REFUNDED)),
        outstanding=Sum("amount", filter=Q(status=Payment.Status.PENDING)),
    )
    by_status = dict(Payment.objects.values_list("status").order_by().annotate(n=Count("id")))
    by_provider = dict(
        Payment.objects.filter(status=Payment.Status.COMPLETED)
        .values_list("provider")
        .order_by()
        .annotate(n=Sum("amount"))
    )
    zero = Decimal("0.00")
    return {
        "total": totals["count"],
        "collected": totals["collected"] or zero,
        "refunded": totals["refunded"] or zero,
        "outstanding": totals["outstanding"] or zero,
        "by_status": {value: by_status.get(value, 0) for value in Payment.Status.values},
        "collected_by_provider": {
            value: by_provider.get(value) or zero for value in Payment.Provider.values
        },
    }


def pending_payments() -> QuerySet:
    return Payment.objects.filter(status=Payment.Status.PENDING).select_related("booking", "user")


def enabled_providers() -> list[str]:
    providers = []
    if settings.STRIPE_SECRET_KEY and settings.STRIPE_PUBLISHABLE_KEY:
        providers.append(Payment.Provider.CARD.value)
    if settings.MPESA_CONSUMER_KEY and settings.MPESA_CONSUMER_SECRET:
        providers.append(Payment.Provider.MPESA.value)
    providers += [Payment.Provider.CASH.value, Payment.Provider.BANK_TRANSFER.value]
    return providers
