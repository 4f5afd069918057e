from __future__ import annotations

import logging

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError

from bookings import domain as booking_domain
from bookings.serializers import AvailabilityQuerySerializer
from core.permissions import IsAdminOrReadOnly, IsAdminOrSupport, IsAdminRole
from core.responses import (
    EnvelopeResponseMixin,
    created_response,
    deleted_response,
    success_response,
)
from storage.s3 import (
    delete_object,
    guess_content_type,
    object_key,
    presign_put,
    public_url,
    vehicle_prefix,
)
from storage.validators import validate_image_upload

from . import domain
from .filters import VehicleFilter
from .models import MaintenanceRecord, Vehicle, VehicleImage, VehicleSpecification
from .serializers import (
    EarningsQuerySerializer,
    ImageCompleteSerializer,
    ImagePresignSerializer,
    MaintenanceRecordSerializer,
    VehicleConditionSerializer,
    VehicleFuelSerializer,
    VehicleImageSerializer,
    VehicleMileageSerializer,
    VehicleSerializer,
    VehicleSpecificationSerializer,
    VehicleStatusSerializer,
)

logger = logging.getLogger(__name__)


class VehicleSpecificationViewSet(EnvelopeResponseMixin, viewsets.ModelViewSet):
    queryset = VehicleSpecification.objects.all()
    serializer_class = VehicleSpecificationSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["manufacturer", "fuel_type", "transmission", "vehicle_category", "year"]
    search_fields = ["manufacturer", "model", "color"]
    ordering_fields = ["manufacturer", "year", "created_at"]

    def perform_destroy(self, instance: VehicleSpecification):
        if instance.vehicles.exists():
            raise ValidationError(
                {"detail": "Cannot delete a specification that is used by vehicles."}
            )
        instance.delete()

    @action(detail=False, methods=["get"], url_path="manufacturers")
    def manufacturers(self, request):
        names = (
            VehicleSpecification.objects.order_by("manufacturer")
            .values_list("manufacturer", flat=True)
            .distinct()
        )
        return success_response(list(names), "Manufacturers retrieved")


class VehicleViewSet(EnvelopeResponseMixin, viewsets.ModelViewSet):
    serializer_class = VehicleSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_class = VehicleFilter
    search_fields = ["license_plate", "specification__manufacturer", "specification__model"]
    ordering_fields = ["rental_rate", "created_at", "mileage"]

    ADMIN_ACTIONS = {"earnings"}
    STAFF_ACTIONS = {"statistics", "maintenance"}

    def get_permissions(self):
        if self.action in self.ADMIN_ACTIONS:
            return [IsAdminRole()]
        if self.action in self.STAFF_ACTIONS and self.request.method in permissions.SAFE_METHODS:
            return [IsAdminOrSupport()]
        return [permission() for permission in self.permission_classes]

    def get_queryset(self):
        return Vehicle.objects.select_related("specification", "location").prefetch_related(
            "images"
        )

    def perform_destroy(self, instance: Vehicle):
        if instance.bookings.exists():
            raise ValidationError(
                {"detail": "Vehicles with booking history cannot be deleted; mark them out of service."}
            )
        logger.info("vehicles: deleted", extra={"vehicle_id": instance.pk})
        instance.delete()

    @action(detail=False, methods=["get"], url_path="available")
    def available(self, request):
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data
        qs = booking_domain.available_vehicles(
            params["start_at"], params["end_at"], params.get("location_id")
        )
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return success_response(self.get_serializer(qs, many=True).data)

    @action(detail=True, methods=["get"], url_path="availability")
    def availability(self, request, pk=None):
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data
        result = booking_domain.check_availability(
            int(pk), params["start_at"], params["end_at"], params.get("location_id")
        )
        return success_response(result, "Availability checked")

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        vehicle = self.get_object()
        serializer = VehicleStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vehicle.set_status(serializer.validated_data["status"])
        logger.info(
            "vehicles: status changed",
            extra={"vehicle_id": vehicle.pk, "status": vehicle.status},
        )
        return success_response(self.get_serializer(vehicle).data, "Vehicle status updated")

    @action(detail=False, methods=["get"], url_path="statistics")
    def statistics(self, request):
        return success_response(domain.fleet_statistics(), "Fleet statistics retrieved")

    @action(detail=False, methods=["get"], url_path="earnings")
    def earnings(self, request):
        query = EarningsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        report = domain.vehicle_earnings(
            query.validated_data.get("start_date"), query.validated_data.get("end_date")
        )
        return success_response(report, "Earnings retrieved")

    @action(detail=True, methods=["patch"], url_path="condition")
    def update_condition(self, request, pk=None):
        vehicle = self.get_object()
        serializer = VehicleConditionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        domain.update_condition(vehicle, **serializer.validated_data)
        logger.info(
            "vehicles: condition updated",
            extra={"vehicle_id": vehicle.pk, "condition_rating": vehicle.condition_rating},
        )
        return success_response(self.get_serializer(vehicle).data, "Vehicle condition updated")

    @action(detail=True, methods=["patch"], url_path="fuel")
    def update_fuel(self, request, pk=None):
        vehicle = self.get_object()
        serializer = VehicleFuelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vehicle.fuel_level = serializer.validated_data["fuel_level"]
        vehicle.save(update_fields=["fuel_level", "updated_at"])
        return success_response(self.get_serializer(vehicle).data, "Fuel level updated")

    @action(detail=True, methods=["patch"], url_path="mileage")
    def update_mileage(self, request, pk=None):
        vehicle = self.get_object()
        serializer = VehicleMileageSerializer(data=request.data, context={"vehicle": vehicle})
        serializer.is_valid(raise_exception=True)
        vehicle.mileage = serializer.validated_data["mileage"]
        vehicle.save(update_fields=["mileage", "updated_at"])
        return success_response(self.get_serializer(vehicle).data, "Mileage updated")

    @action(detail=True, methods=["patch"], url_path="clean")
    def mark_cleaned(self, request, pk=None):
        vehicle = domain.mark_cleaned(self.get_object())
        return success_response(self.get_serializer(vehicle).data, "Vehicle marked as cleaned")

    @action(detail=True, methods=["get", "post"], url_path="maintenance")
    def maintenance(self, request, pk=None):
        vehicle = self.get_object()
        if request.method == "GET":
            records = vehicle.maintenance_records.all()
            return success_response(
                MaintenanceRecordSerializer(records, many=True).data,
                "Maintenance history retrieved",
            )
        serializer = MaintenanceRecordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = domain.save_maintenance_record(serializer, vehicle=vehicle)
        logger.info(
            "vehicles: maintenance recorded",
            extra={"vehicle_id": vehicle.pk, "maintenance_id": record.pk, "status": record.status},
        )
        return created_response(MaintenanceRecordSerializer(record).data, "Maintenance record added")

    @action(
        detail=True,
        methods=["patch", "delete"],
        url_path=r"maintenance/(?P<maintenance_id>\d+)",
    )
    def maintenance_detail(self, request, pk=None, maintenance_id=None):
        vehicle = self.get_object()
        record = get_object_or_404(MaintenanceRecord, pk=maintenance_id, vehicle=vehicle)
        if request.method == "DELETE":
            domain.delete_maintenance_record(record)
            return deleted_response("Maintenance record deleted")
        serializer = MaintenanceRecordSerializer(record, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        record = domain.save_maintenance_record(serializer)
        return success_response(MaintenanceRecordSerializer(record).data, "Maintenance record updated")

    @action(detail=True, methods=["get"], url_path="images")
    def images(self, request, pk=None):
        vehicle = self.get_object()
        return success_response(VehicleImageSerializer(vehicle.images.all(), many=True).data)

    @action(detail=True, methods=["post"], url_path="images/presign")
    def images_presign(self, request, pk=None):
        vehicle = self.get_object()
        serializer = ImagePresignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        filename = serializer.validated_data["filename"]
        content_type = serializer.validated_data.get("content_type") or guess_content_type(filename)
        size = serializer.validated_data["size"]
        error = validate_image_upload(content_type=content_type, size=size)
        if error:
            raise ValidationError({"detail": error})

        key = object_key(vehicle_id=vehicle.id, filename=filename)
        presigned = presign_put(key, content_type=content_type, size_hint=size)
        return success_response(
            {
                "key": key,
                "upload_url": presigned["upload_url"],
                "headers": presigned["headers"],
            },
            "Upload URL created",
        )

    @action(detail=True, methods=["post"], url_path="images/complete")
    def images_complete(self, request, pk=None):
        vehicle = self.get_object()
        serializer = ImageCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        error = validate_image_upload(content_type=data["content_type"], size=data["size"])
        if error:
            raise ValidationError({"detail": error})
        if not data["key"].startswith(f"{vehicle_prefix(vehicle.id)}/"):
            raise ValidationError({"key": ["Key does not belong to this vehicle."]})

        with transaction.atomic():
            make_primary = data["is_primary"] or not vehicle.images.exists()
            if make_primary:
                vehicle.images.filter(is_primary=True).update(is_primary=False)
            image = VehicleImage.objects.create(
                vehicle=vehicle,
                key=data["key"],
                url=public_url(data["key"]),
                content_type=data["content_type"],
                size=data["size"],
                alt=data["alt"],
                caption=data["caption"],
                display_order=data["display_order"],
                is_primary=make_primary,
            )
        return created_response(VehicleImageSerializer(image).data, "Image added")

    @action(detail=True, methods=["post"], url_path=r"images/(?P<image_id>\d+)/primary")
    def images_primary(self, request, pk=None, image_id=None):
        vehicle = self.get_object()
        image = get_object_or_404(VehicleImage, pk=image_id, vehicle=vehicle)
        with transaction.atomic():
            vehicle.images.filter(is_primary=True).exclude(pk=image.pk).update(is_primary=False)
            image.is_primary = True
            image.save(update_fields=["is_primary"])
        return success_response(VehicleImageSerializer(image).data, "Primary image updated")

    @action(detail=True, methods=["delete"], url_path=r"images/(?P<image_id>\d+)")
    def images_delete(self, request, pk=None, image_id=None):
        vehicle = self.get_object()
        image = get_object_or_404(VehicleImage, pk=image_id, vehicle=vehicle)
        key = image.key
        was_primary = image.is_primary
        with transaction.atomic():
            image.delete()
            if was_primary:
                replacement = vehicle.images.order_by("display_order", "id").first()
                if replacement:
                    replacement.is_primary = True
                    replacement.save(update_fields=["is_primary"])
        try:
            delete_object(key)
        except Exception:
            logger.warning(
                "vehicles: failed to delete image object",
                exc_info=True,
                extra={"vehicle_id": vehicle.pk, "key": key},
            )
        return deleted_response("Image deleted")
