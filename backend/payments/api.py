import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import SignatureInvalid

from .webhooks import dispatch_event, verify_event

logger = logging.getLogger(__name__)


class StripeWebhookView(APIView):
    """Receive Stripe webhook events for booking payments and connected accounts."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = verify_event(payload, sig_header)
        except SignatureInvalid as exc:
            logger.warning("Rejected Stripe webhook: %s", exc.message)
            raise

        outcome = dispatch_event(event)
        return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)
