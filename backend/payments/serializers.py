from decimal import Decimal

from rest_framework import serializers

from payments.models import Payment


class UserDetailsSerializer(serializers.Serializer):
    email = serializers.EmailField()
    name = serializers.CharField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentIntentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    userDetails = UserDetailsSerializer(source="user_details")
    bookingMetadata = serializers.JSONField(source="booking_metadata")

    def validate_bookingMetadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("bookingMetadata must be an object.")
        return value


class PaymentIntentResponseSerializer(serializers.ModelSerializer):
    paymentUrl = serializers.CharField(source="payment_url", read_only=True)

    class Meta:
        model = Payment
        fields = ["reference", "status", "amount", "currency", "paymentUrl"]
        read_only_fields = fields


class ReconcileRequestSerializer(serializers.Serializer):
    since = serializers.DateTimeField(required=False, allow_null=True, default=None)
    until = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        since, until = attrs.get("since"), attrs.get("until")
        if since and until and until <= since:
            raise serializers.ValidationError({"until": "until must be after since."})
        return attrs


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "reference",
            "amount",
            "currency",
            "status",
            "payer_details",
            "intent_metadata",
            "linked_booking_ids",
            "linked_at",
            "gateway_status_code",
            "verified_at",
            "retry_attempts",
            "next_retry_at",
            "last_error_code",
            "last_error_message",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
