from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils import timezone

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

BOOKING_STATUS_SUBJECTS = {
    "confirmed": "Your booking is confirmed",
    "active": "Your rental has started",
    "completed": "Thanks for renting with us",
    "cancelled": "Your booking was cancelled",
}

PROVIDER_LABELS = {
    "card": "Card",
    "mpesa": "M-Pesa",
    "cash": "Cash",
    "bank_transfer": "Bank transfer",
}


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _render(template: str, context: dict) -> str:
    """Render a template relative to the notifications app."""
    return render_to_string(template, context).strip()


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    context = {
        "site_name": getattr(settings, "SITE_NAME", "RentDesk"),
        "site_url": frontend_origin,
        "brand_primary_color": getattr(settings, "SITE_PRIMARY_COLOR", "#1F6F5C"),
        "brand_text_color": getattr(settings, "SITE_EMAIL_TEXT_COLOR", "#1F2933"),
        "brand_muted_text_color": getattr(settings, "SITE_EMAIL_MUTED_TEXT_COLOR", "#6B7280"),
        "brand_background_color": getattr(settings, "SITE_EMAIL_BACKGROUND_COLOR", "#F4F5F7"),
    }
    if extra:
        context.update(extra)
    return context


def _display_name(user) -> str:
    if user is None:
        return ""
    full_name = f"{user.first_name} {user.last_name}".strip()
    return full_name or user.email or user.username


def _format_datetime(value) -> str:
    if not value:
        return ""
    return timezone.localtime(value).strftime("%a %d %b %Y, %H:%M")


def _format_amount(amount, currency: str) -> str:
    value = Decimal(str(amount or "0")).quantize(Decimal("0.01"))
    return f"{(currency or '').upper()} {value:,}".strip()


def _log_notification(
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    payment_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=NotificationLog.Channel.EMAIL,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            payment_id=payment_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"type": type_, "status": status},
        )


def _prepare_email_bodies(subject: str, template: str, context: dict | None) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context or {})
    context_with_brand["subject"] = subject
    body = _render(f"email/{template}.txt", context_with_brand)
    try:
        html_body = _render(f"email/{template}.html", context_with_brand)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
    payment_id: int | None = None,
) -> bool:
    ids = {"user_id": user_id, "booking_id": booking_id, "payment_id": payment_id}
    if not to_email:
        _log_notification(type_, NotificationLog.Status.FAILED, error="missing recipient email", **ids)
        logger.warning("notifications: cannot send email without recipient", extra={"type": type_})
        return False

    text_body, html_body = _prepare_email_bodies(subject, template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html_body:
        message.attach_alternative(html_body, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception("notifications: email send failed", extra={"type": type_, **ids})
        _log_notification(
            type_,
            NotificationLog.Status.FAILED,
            error=str(exc) or exc.__class__.__name__,
            **ids,
        )
        return False

    _log_notification(type_, NotificationLog.Status.SENT, **ids)
    return True


@shared_task(queue="emails")
def send_payment_receipt_email(payment_id: int) -> bool:
    """Email the payer a receipt once a payment completes."""
    from payments.models import Payment

    payment = (
        Payment.objects.select_related(
            "user", "booking", "booking__vehicle", "booking__vehicle__specification"
        )
        .filter(pk=payment_id)
        .first()
    )
    if payment is None:
        logger.warning("notifications: payment %s no longer exists", payment_id)
        return False

    booking = payment.booking
    vehicle = booking.vehicle if booking else None
    spec = vehicle.specification if vehicle else None
    metadata = payment.metadata or {}
    context = {
        "user_name": _display_name(payment.user),
        "payment": payment,
        "booking": booking,
        "vehicle_label": f"{spec.manufacturer} {spec.model}" if spec else "",
        "license_plate": vehicle.license_plate if vehicle else "",
        "start_display": _format_datetime(booking.start_at) if booking else "",
        "end_display": _format_datetime(booking.end_at) if booking else "",
        "amount_display": _format_amount(payment.amount, payment.currency),
        "provider_label": PROVIDER_LABELS.get(payment.provider, payment.provider),
        "paid_display": _format_datetime(payment.paid_at),
        "receipt_number": metadata.get("mpesa_receipt_number")
        or metadata.get("charge_id")
        or payment.external_id,
    }
    return _send_email_logged(
        "payment_receipt",
        to_email=payment.user.email,
        subject=f"Payment receipt #{payment.id}",
        template="payment_receipt",
        context=context,
        user_id=payment.user_id,
        booking_id=payment.booking_id,
        payment_id=payment.id,
    )


@shared_task(queue="emails")
def send_booking_status_email(booking_id: int, new_status: str) -> bool:
    """Let the renter know their booking moved to ``new_status``."""
    from bookings.models import Booking

    booking = (
        Booking.objects.select_related("user", "vehicle", "vehicle__specification", "location")
        .filter(pk=booking_id)
        .first()
    )
    if booking is None:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return False

    subject = BOOKING_STATUS_SUBJECTS.get(new_status)
    if subject is None:
        logger.info("notifications: no email for booking status %s", new_status)
        return False

    spec = booking.vehicle.specification
    context = {
        "user_name": _display_name(booking.user),
        "booking": booking,
        "status": new_status,
        "vehicle_label": f"{spec.manufacturer} {spec.model}",
        "license_plate": booking.vehicle.license_plate,
        "location_name": booking.location.name if booking.location else "",
        "start_display": _format_datetime(booking.start_at),
        "end_display": _format_datetime(booking.end_at),
        "total_display": _format_amount(booking.total_amount, ""),
    }
    return _send_email_logged(
        f"booking_{new_status}",
        to_email=booking.user.email,
        subject=subject,
        template="booking_status",
        context=context,
        user_id=booking.user_id,
        booking_id=booking.id,
    )
