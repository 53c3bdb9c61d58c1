from rest_framework import serializers

from payments.models import Payment
from payments.services.reconciler import OUTCOMES


class PaymentSerializer(serializers.ModelSerializer):
    booking_id = serializers.UUIDField(read_only=True)
    space_name = serializers.CharField(source="booking.space.name", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "booking_id",
            "space_name",
            "external_intent_id",
            "amount",
            "currency",
            "status",
            "payment_method",
            "failure_reason",
            "needs_review",
            "completed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CreateIntentSerializer(serializers.Serializer):
    booking_id = serializers.UUIDField()


class IntentDescriptorSerializer(serializers.Serializer):
    intent_id = serializers.CharField()
    client_secret = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    amount_minor = serializers.IntegerField()
    currency = serializers.CharField()
    status = serializers.CharField()
    payment_id = serializers.CharField()
    reused = serializers.BooleanField()


class ManualConfirmSerializer(serializers.Serializer):
    intent_id = serializers.CharField(max_length=255)
    outcome = serializers.ChoiceField(choices=OUTCOMES, required=False)
    payment_method = serializers.DictField(required=False)
