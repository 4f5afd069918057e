from rest_framework import serializers

from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    user_email = serializers.ReadOnlyField(source="user.email")
    booking_status = serializers.ReadOnlyField(source="booking.status")

    class Meta:
        model = Payment
        fields = [
            "id",
            "booking",
            "booking_status",
            "user",
            "user_email",
            "amount",
            "currency",
            "provider",
            "status",
            "external_id",
            "phone_number",
            "failure_reason",
            "metadata",
            "paid_at",
            "refunded_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CardIntentRequestSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    currency = serializers.CharField(max_length=8, required=False, allow_blank=True, default="")
    metadata = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False, default=dict)


class CheckoutSessionRequestSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    currency = serializers.CharField(max_length=8, required=False, allow_blank=True, default="")


class StkPushRequestSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    phone_number = serializers.CharField(max_length=20)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    description = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")


class ManualPaymentSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    provider = serializers.ChoiceField(choices=[p.value for p in Payment.MANUAL_PROVIDERS])
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    currency = serializers.CharField(max_length=8, required=False, allow_blank=True, default="")
    reference = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    status = serializers.ChoiceField(
        choices=[Payment.Status.PENDING, Payment.Status.COMPLETED],
        required=False,
        default=Payment.Status.PENDING,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Payment.Status.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RefundRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
