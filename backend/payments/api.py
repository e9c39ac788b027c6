import logging

import stripe
from django.conf import settings
from rest_framework import permissions, status, viewsets
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.exceptions import GatewayUnavailable, MalformedIntent, StoreUnavailable, UnknownReference
from payments.models import Payment
from payments.serializers import (
    PaymentIntentCreateSerializer,
    PaymentIntentResponseSerializer,
    PaymentSerializer,
    ReconcileRequestSerializer,
)
from payments.services.engine import create_payment_intent, run_reconcile_sweep, verify_and_materialize
from payments.services.reconciler import ReconcileWindow

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
}


def _unavailable(exc):
    return Response({"detail": str(exc), "error": exc.as_dict()}, status=status.HTTP_503_SERVICE_UNAVAILABLE)


class PaymentIntentCreateView(APIView):
    """Open a payment intent for a checkout; public, the customer is not logged in."""

    permission_classes = [permissions.AllowAny]
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        serializer = PaymentIntentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            payment = create_payment_intent(
                data["amount"],
                data["user_details"],
                data["booking_metadata"],
            )
        except MalformedIntent as exc:
            return Response(
                {"bookingMetadata": [str(exc)], "error": exc.as_dict()},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except (GatewayUnavailable, StoreUnavailable) as exc:
            logger.warning("Could not open payment intent: %s", exc)
            return _unavailable(exc)

        return Response(PaymentIntentResponseSerializer(payment).data, status=status.HTTP_201_CREATED)


class PaymentVerifyView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes: list = []

    def post(self, request, reference, *args, **kwargs):
        try:
            result = verify_and_materialize(reference)
        except UnknownReference as exc:
            return Response({"detail": str(exc), "error": exc.as_dict()}, status=status.HTTP_404_NOT_FOUND)
        except (GatewayUnavailable, StoreUnavailable) as exc:
            return _unavailable(exc)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class ReconcileView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, *args, **kwargs):
        serializer = ReconcileRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        window = ReconcileWindow(
            since=serializer.validated_data.get("since"),
            until=serializer.validated_data.get("until"),
        )
        report = run_reconcile_sweep(window)
        return Response(report.as_dict(), status=status.HTTP_200_OK)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAdminUser]
    lookup_field = "reference"
    filterset_fields = ["status", "currency"]
    search_fields = ["reference", "payer_details__email"]
    ordering_fields = ["created_at", "amount"]

    def get_queryset(self):
        queryset = Payment.objects.all().order_by("-created_at")
        linked = self.request.query_params.get("linked")
        if linked in {"true", "false"}:
            queryset = queryset.filter(linked_at__isnull=(linked == "false"))
        return queryset


class StripeWebhookView(APIView):
    """
    Receive Stripe Checkout events and re-drive verification for the payment.

    The event only tells us which reference to look at; the status itself is
    always read back from the gateway.
    """

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            logger.warning("Invalid payload received on Stripe webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.warning("Invalid Stripe signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        if event["type"] not in WEBHOOK_EVENTS:
            return Response(status=status.HTTP_200_OK)

        data_object = event["data"]["object"]
        reference = data_object.get("client_reference_id") or (data_object.get("metadata") or {}).get("reference")
        if not reference:
            logger.warning("Stripe event %s carried no payment reference.", event.get("id"))
            return Response(status=status.HTTP_200_OK)

        try:
            result = verify_and_materialize(reference)
        except UnknownReference:
            logger.warning("Stripe event %s names unknown payment %s.", event.get("id"), reference)
            return Response(status=status.HTTP_200_OK)
        except (GatewayUnavailable, StoreUnavailable) as exc:
            logger.warning("Deferring Stripe event %s for %s: %s", event.get("id"), reference, exc)
            return _unavailable(exc)

        return Response(result.as_dict(), status=status.HTTP_200_OK)
