from rest_framework import serializers

from core.exceptions import Conflict

from .models import MaintenanceRecord, Vehicle, VehicleImage, VehicleSpecification


class VehicleSpecificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = VehicleSpecification
        fields = [
            "id",
            "manufacturer",
            "model",
            "year",
            "fuel_type",
            "engine_capacity",
            "transmission",
            "seating_capacity",
            "color",
            "features",
            "vehicle_category",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_features(self, value):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("features must be a list of strings.")
        return value


class VehicleImageSerializer(serializers.ModelSerializer):
    class Meta:
        model = VehicleImage
        fields = [
            "id",
            "vehicle",
            "url",
            "alt",
            "caption",
            "is_primary",
            "display_order",
            "content_type",
            "size",
            "created_at",
        ]
        read_only_fields = fields


class VehicleSerializer(serializers.ModelSerializer):
    specification_detail = VehicleSpecificationSerializer(source="specification", read_only=True)
    location_name = serializers.ReadOnlyField(source="location.name")
    images = VehicleImageSerializer(many=True, read_only=True)

    class Meta:
        model = Vehicle
        fields = [
            "id",
            "specification",
            "specification_detail",
            "location",
            "location_name",
            "rental_rate",
            "availability",
            "status",
            "license_plate",
            "mileage",
            "fuel_level",
            "condition_rating",
            "notes",
            "last_cleaned_at",
            "images",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "last_cleaned_at", "created_at", "updated_at"]
        extra_kwargs = {"license_plate": {"validators": []}}

    def validate_license_plate(self, value: str) -> str:
        plate = value.strip().upper()
        qs = Vehicle.objects.filter(license_plate__iexact=plate)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise Conflict("A vehicle with this license plate already exists.")
        return plate

    def validate_rental_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Rental rate must be greater than zero.")
        return value

    def validate_fuel_level(self, value: int) -> int:
        if value > 100:
            raise serializers.ValidationError("Fuel level is a percentage (0-100).")
        return value

    def validate_condition_rating(self, value: int) -> int:
        if not 1 <= value <= 10:
            raise serializers.ValidationError("Condition rating must be between 1 and 10.")
        return value


class VehicleStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Vehicle.Status.choices)


class VehicleConditionSerializer(serializers.Serializer):
    condition_rating = serializers.IntegerField(min_value=1, max_value=10)
    is_damaged = serializers.BooleanField(required=False, default=False)
    damage_description = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["is_damaged"] and not attrs["damage_description"].strip():
            raise serializers.ValidationError(
                {"damage_description": ["Describe the damage when marking a vehicle as damaged."]}
            )
        return attrs


class VehicleFuelSerializer(serializers.Serializer):
    fuel_level = serializers.IntegerField(min_value=0, max_value=100)


class VehicleMileageSerializer(serializers.Serializer):
    mileage = serializers.IntegerField(min_value=0)

    def validate_mileage(self, value: int) -> int:
        vehicle = self.context.get("vehicle")
        if vehicle is not None and value < vehicle.mileage:
            raise serializers.ValidationError(
                f"Odometer cannot go backwards (currently {vehicle.mileage})."
            )
        return value


class EarningsQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError({"end_date": ["end_date must not be before start_date."]})
        return attrs


class MaintenanceRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = MaintenanceRecord
        fields = [
            "id",
            "vehicle",
            "maintenance_type",
            "status",
            "description",
            "cost",
            "maintenance_date",
            "service_provider",
            "mileage_at_service",
            "next_service_mileage",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "vehicle", "created_at", "updated_at"]

    def validate_description(self, value: str) -> str:
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Description is required.")
        return value

    def validate_cost(self, value):
        if value < 0:
            raise serializers.ValidationError("Cost cannot be negative.")
        return value

    def validate(self, attrs):
        current = self.instance
        at_service = attrs.get("mileage_at_service", getattr(current, "mileage_at_service", None))
        next_service = attrs.get("next_service_mileage", getattr(current, "next_service_mileage", None))
        if at_service is not None and next_service is not None and next_service <= at_service:
            raise serializers.ValidationError(
                {"next_service_mileage": ["Next service must come after the mileage at service."]}
            )
        return attrs


class ImagePresignSerializer(serializers.Serializer):
    filename = serializers.CharField(max_length=255)
    content_type = serializers.CharField(max_length=64, required=False, allow_blank=True)
    size = serializers.IntegerField()


class ImageCompleteSerializer(serializers.Serializer):
    key = serializers.CharField(max_length=512)
    content_type = serializers.CharField(max_length=64)
    size = serializers.IntegerField()
    alt = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    caption = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    is_primary = serializers.BooleanField(required=False, default=False)
    display_order = serializers.IntegerField(required=False, min_value=0, default=0)
