"""
Single write path for payment status changes.

Every provider result (Stripe webhook, M-Pesa callback or status query, manual
admin update, refund) ends up in :func:`reconcile`, which updates the payment
and cascades the booking status in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from django.core.exceptions import ValidationError
from django.db import transaction
from django.http import Http404
from django.utils import timezone

from bookings import domain as booking_domain
from bookings.models import Booking

from .errors import ReconciliationError
from .models import Payment

logger = logging.getLogger(__name__)

REFUND_NOT_ALLOWED_MESSAGE = "Only completed payments can be refunded."


@dataclass(frozen=True)
class ReconcileResult:
    payment: Payment
    changed: bool
    booking_changed: bool = False


def _queue_receipt(payment_id: int) -> None:
    from notifications import tasks as notification_tasks

    def _enqueue():
        try:
            notification_tasks.send_payment_receipt_email.delay(payment_id)
        except Exception:
            logger.info(
                "notifications: failed to queue payment receipt",
                exc_info=True,
                extra={"payment_id": payment_id},
            )

    transaction.on_commit(_enqueue)


def _cascade_booking(payment: Payment, new_status: str) -> bool:
    if not payment.booking_id:
        return False
    booking = Booking.objects.select_for_update().get(pk=payment.booking_id)
    if new_status == Payment.Status.COMPLETED:
        return booking_domain.confirm_for_payment(booking)
    if new_status == Payment.Status.REFUNDED:
        return booking_domain.cancel_for_refund(booking)
    # Failed or cancelled payments leave the booking for the user to retry.
    return False


def _apply(
    payment: Payment,
    new_status: str,
    *,
    reason: str,
    metadata: Optional[Mapping[str, Any]],
    external_id: str,
    paid_at: Optional[datetime],
) -> ReconcileResult:
    current = payment.status

    if new_status == Payment.Status.REFUNDED and current != Payment.Status.COMPLETED:
        raise ValidationError({"status": [REFUND_NOT_ALLOWED_MESSAGE]})

    if current == new_status:
        logger.info(
            "payments: reconcile no-op",
            extra={"payment_id": payment.pk, "status": current},
        )
        return ReconcileResult(payment=payment, changed=False)

    if not payment.can_transition_to(new_status):
        logger.warning(
            "payments: ignoring disallowed transition",
            extra={"payment_id": payment.pk, "from_status": current, "to_status": new_status},
        )
        return ReconcileResult(payment=payment, changed=False)

    now = timezone.now()
    payment.status = new_status
    update_fields = ["status", "updated_at"]
    if metadata:
        payment.metadata = {**(payment.metadata or {}), **dict(metadata)}
        update_fields.append("metadata")
    if external_id and external_id != payment.external_id:
        payment.external_id = external_id
        update_fields.append("external_id")

    if new_status == Payment.Status.COMPLETED:
        payment.paid_at = paid_at or now
        payment.failure_reason = ""
        update_fields += ["paid_at", "failure_reason"]
    elif new_status in (Payment.Status.FAILED, Payment.Status.CANCELLED):
        payment.failure_reason = reason or ""
        update_fields.append("failure_reason")
    elif new_status == Payment.Status.REFUNDED:
        payment.refunded_at = now
        update_fields.append("refunded_at")

    payment.save(update_fields=update_fields)
    booking_changed = _cascade_booking(payment, new_status)

    logger.info(
        "payments: reconciled",
        extra={
            "payment_id": payment.pk,
            "from_status": current,
            "to_status": new_status,
            "booking_id": payment.booking_id,
            "booking_changed": booking_changed,
        },
    )
    if new_status == Payment.Status.COMPLETED:
        _queue_receipt(payment.pk)
    return ReconcileResult(payment=payment, changed=True, booking_changed=booking_changed)


def reconcile(
    payment: Union[Payment, int],
    new_status: str,
    *,
    reason: str = "",
    metadata: Optional[Mapping[str, Any]] = None,
    external_id: str = "",
    paid_at: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Move a payment to ``new_status`` and cascade the booking.

    Repeating the current status is a no-op, so duplicate webhook or callback
    deliveries never re-confirm a booking or re-send a receipt. Refunds are only
    accepted from ``completed`` (ValidationError otherwise). Any other failure
    rolls back both rows and is raised as :class:`ReconciliationError`.
    """
    if new_status not in Payment.Status.values:
        raise ValidationError({"status": [f"Unknown payment status: {new_status}"]})

    payment_id = payment.pk if isinstance(payment, Payment) else payment
    try:
        with transaction.atomic():
            locked = Payment.objects.select_for_update().filter(pk=payment_id).first()
            if locked is None:
                raise Http404("Payment not found")
            result = _apply(
                locked,
                new_status,
                reason=reason,
                metadata=metadata,
                external_id=external_id,
                paid_at=paid_at,
            )
    except (ValidationError, Http404):
        raise
    except Exception as exc:
        logger.exception(
            "payments: reconciliation failed",
            extra={"payment_id": payment_id, "to_status": new_status},
        )
        raise ReconciliationError(f"Failed to reconcile payment {payment_id}: {exc}") from exc

    if isinstance(payment, Payment) and result.changed:
        payment.refresh_from_db()
    return result
