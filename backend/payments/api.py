"""HTTP surface for payments: provider entry points, webhooks and payment records."""

from __future__ import annotations

import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, viewsets
from rest_framework.decorators import (
    action,
    api_view,
    authentication_classes,
    permission_classes,
)
from rest_framework.response import Response

from bookings.models import Booking
from core.permissions import IsAdminOrSupport, IsAdminRole, IsOwnerOrStaff, is_staff_member
from core.responses import EnvelopeResponseMixin, created_response, success_response

from . import services
from .gateways import get_card_gateway
from .models import Payment
from .serializers import (
    CardIntentRequestSerializer,
    CheckoutSessionRequestSerializer,
    ManualPaymentSerializer,
    PaymentSerializer,
    PaymentStatusSerializer,
    RefundRequestSerializer,
    StkPushRequestSerializer,
)

logger = logging.getLogger(__name__)


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def payment_config(request):
    return success_response(
        {
            "stripe_publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
            "currency": settings.STRIPE_DEFAULT_CURRENCY,
            "mpesa_currency": settings.MPESA_CURRENCY,
            "providers": services.enabled_providers(),
        },
        "Payment configuration retrieved",
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def stripe_create_intent(request):
    serializer = CardIntentRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    result = services.initiate_card_payment(
        booking_id=data["booking_id"],
        user=request.user,
        amount=data.get("amount"),
        currency=data["currency"],
        metadata=data["metadata"],
    )
    return success_response(result, "Payment intent created")


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def stripe_checkout_session(request):
    serializer = CheckoutSessionRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    result = services.initiate_checkout_session(
        booking_id=data["booking_id"],
        user=request.user,
        amount=data.get("amount"),
        currency=data["currency"],
    )
    return success_response(result, "Checkout session created")


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Verify and dispatch a Stripe event; acknowledged with ``{"received": true}``."""
    event = get_card_gateway().verify_webhook(
        request.body,
        request.META.get("HTTP_STRIPE_SIGNATURE", ""),
    )
    services.handle_stripe_event(event)
    return Response({"received": True})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def mpesa_stk_push(request):
    serializer = StkPushRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    result = services.initiate_mpesa_payment(
        booking_id=data["booking_id"],
        user=request.user,
        phone_number=data["phone_number"],
        amount=data.get("amount"),
        description=data["description"],
    )
    return success_response(result, "STK push sent. Check your phone to complete the payment.")


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def mpesa_status(request, checkout_request_id: str):
    result = services.sync_mpesa_status(checkout_request_id, user=request.user)
    return success_response(result, "Payment status retrieved")


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def mpesa_callback(request):
    try:
        ack = services.handle_mpesa_callback(request.data)
    except DjangoValidationError:
        logger.warning("mpesa: malformed callback ignored", exc_info=True)
        ack = dict(services.MPESA_CALLBACK_ACK)
    return Response(ack)


class PaymentViewSet(
    EnvelopeResponseMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Payment records. Renters see their own; staff see everything.

    Payments are never deleted; status changes go through reconciliation.
    """

    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAuthenticated, IsOwnerOrStaff]
    filterset_fields = ["status", "provider", "booking", "user"]
    ordering_fields = ["created_at", "amount", "paid_at"]
    lookup_value_regex = r"\d+"

    ADMIN_ACTIONS = {"create", "set_status", "refund"}
    STAFF_ACTIONS = {"list", "statistics", "pending"}

    def get_permissions(self):
        if self.action in self.ADMIN_ACTIONS:
            return [IsAdminRole()]
        if self.action in self.STAFF_ACTIONS:
            return [IsAdminOrSupport()]
        return [permission() for permission in self.permission_classes]

    def get_queryset(self):
        qs = Payment.objects.select_related("booking", "user")
        user = self.request.user
        if is_staff_member(user):
            return qs
        return qs.filter(user=user)

    def create(self, request, *args, **kwargs):
        serializer = ManualPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment = services.record_manual_payment(
            booking_id=data["booking_id"],
            provider=data["provider"],
            recorded_by=request.user,
            amount=data.get("amount"),
            currency=data["currency"],
            reference=data["reference"],
            status=data["status"],
            notes=data["notes"],
        )
        payment.refresh_from_db()
        return created_response(PaymentSerializer(payment).data, "Payment recorded")

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        payment = self.get_object()
        serializer = PaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.update_payment_status(
            payment.pk,
            serializer.validated_data["status"],
            reason=serializer.validated_data["reason"],
            actor=request.user,
        )
        message = "Payment status updated" if result.changed else "Payment status unchanged"
        return success_response(PaymentSerializer(result.payment).data, message)

    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        payment = self.get_object()
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = services.refund_payment(
            payment.pk,
            reason=serializer.validated_data["reason"],
            actor=request.user,
        )
        return success_response(PaymentSerializer(payment).data, "Payment refunded")

    @action(detail=False, methods=["get"], url_path=r"booking/(?P<booking_id>\d+)")
    def for_booking(self, request, booking_id=None):
        booking = get_object_or_404(Booking, pk=booking_id)
        if not is_staff_member(request.user) and booking.user_id != request.user.id:
            raise Http404("Booking not found")
        qs = Payment.objects.filter(booking=booking).select_related("booking", "user")
        return success_response(PaymentSerializer(qs, many=True).data, "Booking payments retrieved")

    @action(detail=False, methods=["get"], url_path="mine")
    def mine(self, request):
        qs = Payment.objects.filter(user=request.user).select_related("booking", "user")
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return success_response(self.get_serializer(qs, many=True).data)

    @action(detail=False, methods=["get"], url_path="statistics")
    def statistics(self, request):
        return success_response(services.payment_statistics(), "Payment statistics retrieved")

    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        qs = self.filter_queryset(services.pending_payments())
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return success_response(self.get_serializer(qs, many=True).data)
