"""
Error taxonomy shared by the booking, catalog and payment apps.

Each error carries a stable ``error_type`` (rendered to API clients) and the
HTTP status the API layer answers with. Services raise these directly; the DRF
exception handler below turns them into ``{"error": {...}}`` payloads.
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BookingError(Exception):
    error_type = "api_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Unexpected booking error."
    retryable = False

    def __init__(self, message: str | None = None, *, code: str | None = None, **details):
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def as_payload(self) -> dict:
        payload = {"type": self.error_type, "message": self.message}
        if self.code:
            payload["code"] = self.code
        payload.update(self.details)
        return payload


class InvalidRequest(BookingError):
    error_type = "invalid_request_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The request is invalid."


class ResourceMissing(BookingError):
    error_type = "resource_missing"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found."


class PermissionDenied(BookingError):
    error_type = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have permission to perform this action."


class BookingConflict(BookingError):
    """The slot overlaps a booking that already holds the provider's schedule."""

    error_type = "booking_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The provider already has a booking at this time."


class InvalidStateTransition(BookingError):
    error_type = "invalid_state"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The booking cannot make this transition from its current state."


class PaymentFailed(BookingError):
    error_type = "payment_error"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "The payment could not be completed."


class PaymentAuthorizationExpired(PaymentFailed):
    """The card hold lapsed before capture; the customer has to pay again."""

    error_type = "payment_expired"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment authorization has expired. Customer must re-confirm payment."


class PayoutAccountUnavailable(PaymentFailed):
    error_type = "provider_payout_unavailable"
    status_code = status.HTTP_409_CONFLICT
    default_message = (
        "This provider cannot accept payments yet. "
        "The provider must finish setting up payouts before bookings can be paid."
    )


class UpstreamUnavailable(BookingError):
    error_type = "api_connection_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "A payment or storage service is temporarily unavailable. Please retry."
    retryable = True


class SignatureInvalid(BookingError):
    error_type = "signature_invalid"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Webhook signature verification failed."


def api_exception_handler(exc, context):
    if isinstance(exc, BookingError):
        if exc.status_code >= 500:
            logger.warning("Booking request failed upstream: %s", exc.message)
        return Response({"error": exc.as_payload()}, status=exc.status_code)
    return exception_handler(exc, context)
