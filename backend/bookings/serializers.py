from rest_framework import serializers

from .models import Booking


class BookingSerializer(serializers.ModelSerializer):
    """Read model for bookings; writes go through the domain helpers."""

    days = serializers.IntegerField(read_only=True)
    vehicle_label = serializers.SerializerMethodField()
    user_email = serializers.ReadOnlyField(source="user.email")

    class Meta:
        model = Booking
        fields = [
            "id",
            "user",
            "user_email",
            "vehicle",
            "vehicle_label",
            "location",
            "start_at",
            "end_at",
            "days",
            "total_amount",
            "status",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_vehicle_label(self, obj: Booking) -> str:
        vehicle = obj.vehicle
        spec = getattr(vehicle, "specification", None)
        if spec is None:
            return vehicle.license_plate
        return f"{spec.manufacturer} {spec.model} ({vehicle.license_plate})"


class BookingCreateSerializer(serializers.Serializer):
    vehicle_id = serializers.IntegerField()
    location_id = serializers.IntegerField(required=False, allow_null=True)
    start_at = serializers.DateTimeField()
    end_at = serializers.DateTimeField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class BookingUpdateSerializer(serializers.Serializer):
    """The only fields a renter may change on an existing booking."""

    start_at = serializers.DateTimeField(required=False)
    end_at = serializers.DateTimeField(required=False)
    location_id = serializers.IntegerField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class AvailabilityQuerySerializer(serializers.Serializer):
    vehicle_id = serializers.IntegerField(required=False)
    start_at = serializers.DateTimeField()
    end_at = serializers.DateTimeField()
    location_id = serializers.IntegerField(required=False)
