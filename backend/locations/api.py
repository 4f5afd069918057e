from __future__ import annotations

import logging

from django.db.models import Count
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError

from core.permissions import IsAdminOrReadOnly
from core.responses import EnvelopeResponseMixin, success_response

from .models import Location
from .serializers import LocationSerializer

logger = logging.getLogger(__name__)


class LocationViewSet(EnvelopeResponseMixin, viewsets.ModelViewSet):
    serializer_class = LocationSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["city", "is_active"]
    search_fields = ["name", "address", "city"]
    ordering_fields = ["name", "created_at"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        return Location.objects.annotate(vehicle_total=Count("vehicles")).order_by("name")

    def perform_destroy(self, instance: Location):
        if instance.vehicles.exists():
            raise ValidationError(
                {"detail": "Cannot delete a location that still has vehicles assigned."}
            )
        logger.info("locations: deleted", extra={"location_id": instance.pk})
        instance.delete()

    @action(detail=True, methods=["get"], url_path="vehicles")
    def vehicles(self, request, pk=None):
        from vehicles.serializers import VehicleSerializer

        location = self.get_object()
        qs = location.vehicles.select_related("specification", "location").prefetch_related(
            "images"
        )
        return success_response(VehicleSerializer(qs, many=True).data)
