from typing import Optional

from rest_framework import serializers

from core.phone import normalize_phone

from .models import Location


class LocationSerializer(serializers.ModelSerializer):
    vehicle_count = serializers.SerializerMethodField()

    class Meta:
        model = Location
        fields = [
            "id",
            "name",
            "address",
            "city",
            "contact_phone",
            "is_active",
            "vehicle_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "vehicle_count", "created_at", "updated_at"]

    def get_vehicle_count(self, obj: Location) -> int:
        annotated = getattr(obj, "vehicle_total", None)
        if annotated is not None:
            return annotated
        return obj.vehicles.count()

    def validate_contact_phone(self, value: Optional[str]) -> str:
        if not value:
            return ""
        return normalize_phone(value)
