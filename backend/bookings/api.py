"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.conf import settings
from rest_framework import mixins, permissions, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError

from core.permissions import IsAdminOrSupport, IsAdminRole, IsOwnerOrStaff, is_staff_member
from core.responses import EnvelopeResponseMixin, created_response, deleted_response, success_response

from . import domain
from .models import Booking
from .serializers import (
    AvailabilityQuerySerializer,
    BookingCreateSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
)

logger = logging.getLogger(__name__)


class BookingViewSet(
    EnvelopeResponseMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Bookings for the signed-in user; admins and support agents see every booking.

    Lifecycle changes go through ``bookings.domain`` so that validation, locking
    and notifications stay in one place.
    """

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated, IsOwnerOrStaff]
    filterset_fields = ["status", "vehicle", "user", "location"]
    ordering_fields = ["start_at", "created_at", "total_amount"]
    lookup_value_regex = r"\d+"

    ADMIN_ACTIONS = {"confirm", "activate", "complete", "destroy"}
    STAFF_ACTIONS = {"statistics", "upcoming"}

    def get_permissions(self):
        if self.action == "check_availability":
            return [permissions.AllowAny()]
        if self.action in self.ADMIN_ACTIONS:
            return [IsAdminRole()]
        if self.action in self.STAFF_ACTIONS:
            return [IsAdminOrSupport()]
        return [permission() for permission in self.permission_classes]

    def get_queryset(self):
        qs = Booking.objects.select_related(
            "user", "vehicle", "vehicle__specification", "location"
        )
        user = self.request.user
        if is_staff_member(user) or self.action in self.ADMIN_ACTIONS:
            return qs
        return qs.filter(user=user)

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = domain.create_booking(
            user=request.user,
            vehicle_id=data["vehicle_id"],
            start_at=data["start_at"],
            end_at=data["end_at"],
            location_id=data.get("location_id"),
            notes=data.get("notes", ""),
        )
        return created_response(BookingSerializer(booking).data, "Booking created successfully")

    def partial_update(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        serializer = BookingUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        booking = domain.update_booking(booking, **serializer.validated_data)
        return success_response(BookingSerializer(booking).data, "Booking updated successfully")

    def update(self, request, *args, **kwargs):
        return self.partial_update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        domain.delete_booking(booking)
        return deleted_response("Booking deleted successfully")

    @action(detail=False, methods=["get"], url_path="check-availability")
    def check_availability(self, request, *args, **kwargs):
        """Public availability probe for a vehicle and range."""
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data
        if not params.get("vehicle_id"):
            raise ValidationError({"detail": "vehicle_id query parameter is required."})
        result = domain.check_availability(
            params["vehicle_id"],
            params["start_at"],
            params["end_at"],
            params.get("location_id"),
        )
        return success_response(result, "Availability checked")

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, *args, **kwargs):
        booking = domain.cancel_booking(self.get_object())
        return success_response(BookingSerializer(booking).data, "Booking cancelled successfully")

    @action(detail=True, methods=["post"], url_path="confirm")
    def confirm(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        domain.assert_can_confirm(booking)
        domain.ensure_no_conflict(
            booking.vehicle_id,
            booking.start_at,
            booking.end_at,
            exclude_booking_id=booking.id,
        )
        booking = domain.confirm_booking(booking)
        return success_response(BookingSerializer(booking).data, "Booking confirmed successfully")

    @action(detail=True, methods=["post"], url_path="activate")
    def activate(self, request, *args, **kwargs):
        booking = domain.activate_booking(self.get_object())
        return success_response(BookingSerializer(booking).data, "Booking activated")

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, *args, **kwargs):
        booking = domain.complete_booking(self.get_object())
        return success_response(BookingSerializer(booking).data, "Booking completed successfully")

    @action(detail=False, methods=["get"], url_path="statistics")
    def statistics(self, request, *args, **kwargs):
        return success_response(domain.booking_statistics(), "Booking statistics retrieved")

    @action(detail=False, methods=["get"], url_path="upcoming")
    def upcoming(self, request, *args, **kwargs):
        try:
            days = int(request.query_params.get("days") or settings.BOOKING_UPCOMING_DAYS)
        except (TypeError, ValueError):
            raise ValidationError({"detail": "days must be an integer."})
        qs = domain.upcoming_bookings(max(days, 1))
        return success_response(BookingSerializer(qs, many=True).data, "Upcoming bookings retrieved")
