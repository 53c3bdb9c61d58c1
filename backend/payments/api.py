import logging

from django.conf import settings
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import BasePermission
from rest_framework.response import Response
from rest_framework.views import APIView

from core.authorization import authorize, scope_visible
from payments.models import Payment
from payments.serializers import (
    CreateIntentSerializer,
    IntentDescriptorSerializer,
    ManualConfirmSerializer,
    PaymentSerializer,
)
from payments.services.intents import create_payment_intent
from payments.services.processor import verify_and_parse_webhook
from payments.services.reconciler import confirm_payment_manually, event_from_webhook, reconcile

logger = logging.getLogger(__name__)


class CanViewPayment(BasePermission):
    def has_object_permission(self, request, view, obj):
        authorize(request.user, "view", obj.booking)
        return True


class PaymentViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """Payment history plus the two client-facing payment actions."""

    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAuthenticated, CanViewPayment]
    filterset_fields = ["status", "booking"]
    ordering_fields = ["created_at", "amount"]

    def get_queryset(self):
        queryset = Payment.objects.select_related("booking__space", "booking__user")
        if self.action != "list":
            return queryset
        return scope_visible(self.request.user, queryset, booking_path="booking")

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        serializer = self.get_serializer(queryset, many=True)
        return Response({"success": True, "payments": serializer.data})

    def retrieve(self, request, *args, **kwargs):
        payment = self.get_object()
        return Response({"success": True, "payment": self.get_serializer(payment).data})

    @action(detail=False, methods=["post"], url_path="create-intent")
    def create_intent(self, request):
        serializer = CreateIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        descriptor = create_payment_intent(
            booking_id=serializer.validated_data["booking_id"],
            actor=request.user,
        )
        return Response(
            {
                "success": True,
                "message": "Payment intent ready.",
                **IntentDescriptorSerializer(descriptor).data,
            },
            status=status.HTTP_200_OK if descriptor.reused else status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["post"])
    def confirm(self, request):
        serializer = ManualConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = confirm_payment_manually(
            intent_id=data["intent_id"],
            actor=request.user,
            outcome=data.get("outcome"),
            payment_method=data.get("payment_method"),
        )
        payment = result.payment
        return Response(
            {
                "success": True,
                "message": result.note,
                "applied": result.applied,
                "booking_confirmed": result.booking_confirmed,
                "payment": PaymentSerializer(payment).data if payment else None,
            }
        )


class StripeWebhookView(APIView):
    """Receive Stripe payment intent events."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        event = verify_and_parse_webhook(
            payload=request.body,
            signature=request.META.get("HTTP_STRIPE_SIGNATURE"),
            secret=settings.STRIPE_WEBHOOK_SECRET,
        )

        payment_event = event_from_webhook(event)
        if payment_event is None:
            logger.debug("Ignoring Stripe event %s (%s)", event.get("id"), event["type"])
            return Response({"received": True})

        result = reconcile(payment_event)
        return Response({"received": True, "applied": result.applied})
