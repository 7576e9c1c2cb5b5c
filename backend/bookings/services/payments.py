"""
Stripe gateway adapter for booking payments.

Every call carries an idempotency key so a retried request replays the
original gateway operation instead of repeating it. Stripe errors are
translated into the booking error taxonomy at this boundary; nothing above
this module handles ``stripe`` exceptions.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from django.conf import settings

from bookings.models import Booking
from core.exceptions import (
    BookingError,
    PaymentAuthorizationExpired,
    PaymentFailed,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_EXPIRED_CODES = {"charge_expired_for_capture"}


@dataclass
class PaymentIntentStub:
    """
    Stand-in for ``stripe.PaymentIntent`` when running in stub mode.

    Identifiers derive from the idempotency key, so replaying a call returns
    the same artifact the way Stripe does.
    """

    id: str
    client_secret: str
    status: str
    amount: int
    latest_charge: Optional[str] = None


@dataclass
class CheckoutSessionStub:
    id: str
    payment_intent: str
    payment_status: str
    url: str


@dataclass
class RefundStub:
    id: str
    status: str


def _stub_id(prefix: str, idempotency_key: str) -> str:
    digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:24]
    return f"{prefix}_test_{digest}"


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def configure_stripe():
    api_key = _get_stripe_api_key()
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


def translate_stripe_error(exc: stripe.StripeError, *, operation: str) -> BookingError:
    code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc) or None

    if code in AUTHORIZATION_EXPIRED_CODES:
        return PaymentAuthorizationExpired(code=code)
    if isinstance(exc, stripe.CardError):
        decline_code = getattr(exc, "decline_code", None)
        details = {"decline_code": decline_code} if decline_code else {}
        return PaymentFailed(message, code=code or "card_declined", **details)
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        logger.warning("Stripe unreachable during %s: %s", operation, exc)
        return UpstreamUnavailable(code=code)
    if isinstance(exc, stripe.APIError):
        logger.warning("Stripe server error during %s: %s", operation, exc)
        return UpstreamUnavailable(code=code)
    if isinstance(exc, stripe.AuthenticationError):
        logger.error("Stripe rejected our credentials during %s: %s", operation, exc)
        return UpstreamUnavailable("Payment provider is misconfigured.", code="authentication_error")
    return PaymentFailed(message, code=code)


def _call(operation: str, func, *args, **kwargs):
    configure_stripe()
    try:
        return func(*args, **kwargs)
    except stripe.StripeError as exc:
        raise translate_stripe_error(exc, operation=operation) from exc


def _booking_metadata(booking: Booking) -> dict:
    return {
        "booking_id": str(booking.pk),
        "customer_id": str(booking.customer_id),
        "provider_id": str(booking.provider_id),
        "service_price_cents": str(booking.service_price_cents),
        "platform_fee_cents": str(booking.platform_fee_cents),
    }


def build_checkout_preview_url(*, booking: Booking, session_id: str) -> str:
    return (
        f"{settings.FRONTEND_URL.rstrip('/')}/payments/preview?"
        f"booking={booking.pk}&amount={booking.amount_total_cents}&session={session_id}"
    )


def create_payment_intent(*, booking: Booking, destination_account: str, idempotency_key: str):
    """
    Authorize (not capture) the booking total as a destination charge.

    The provider's connected account receives the transfer; the platform fee
    is kept as the application fee.
    """

    if _should_use_stub():
        intent_id = _stub_id("pi", idempotency_key)
        return PaymentIntentStub(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status="requires_payment_method",
            amount=booking.amount_total_cents,
        )

    return _call(
        "authorize",
        stripe.PaymentIntent.create,
        amount=booking.amount_total_cents,
        currency=booking.currency,
        capture_method="manual",
        automatic_payment_methods={"enabled": True},
        application_fee_amount=booking.platform_fee_cents,
        transfer_data={"destination": destination_account},
        metadata=_booking_metadata(booking),
        idempotency_key=idempotency_key,
    )


def create_checkout_session(*, booking: Booking, destination_account: str, idempotency_key: str):
    """
    Create a hosted Checkout session (or stub equivalent) for the booking total.

    Returns an object with the subset of attributes (`id`, `payment_intent`,
    `payment_status`, `url`) consumed by the booking workflow.
    """

    if _should_use_stub():
        session_id = _stub_id("cs", idempotency_key)
        return CheckoutSessionStub(
            id=session_id,
            payment_intent=_stub_id("pi", idempotency_key),
            payment_status="unpaid",
            url=build_checkout_preview_url(booking=booking, session_id=session_id),
        )

    frontend = settings.FRONTEND_URL.rstrip("/")
    return _call(
        "checkout",
        stripe.checkout.Session.create,
        mode="payment",
        line_items=[
            {
                "quantity": 1,
                "price_data": {
                    "currency": booking.currency,
                    "unit_amount": booking.amount_total_cents,
                    "product_data": {"name": booking.service_name or "Booking"},
                },
            }
        ],
        payment_intent_data={
            "application_fee_amount": booking.platform_fee_cents,
            "transfer_data": {"destination": destination_account},
            "metadata": _booking_metadata(booking),
        },
        client_reference_id=str(booking.pk),
        success_url=f"{frontend}/payment/success?booking={booking.pk}",
        cancel_url=f"{frontend}/payment/cancel?booking={booking.pk}",
        metadata=_booking_metadata(booking),
        idempotency_key=idempotency_key,
    )


def capture_payment_intent(*, payment_intent_id: str, idempotency_key: str):
    if _should_use_stub():
        return PaymentIntentStub(
            id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret",
            status="succeeded",
            amount=0,
            latest_charge=_stub_id("ch", idempotency_key),
        )
    return _call(
        "capture",
        stripe.PaymentIntent.capture,
        payment_intent_id,
        idempotency_key=idempotency_key,
    )


def cancel_payment_intent(*, payment_intent_id: str, idempotency_key: str):
    if _should_use_stub():
        return PaymentIntentStub(
            id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret",
            status="canceled",
            amount=0,
        )
    return _call(
        "release",
        stripe.PaymentIntent.cancel,
        payment_intent_id,
        idempotency_key=idempotency_key,
    )


def refund_payment_intent(*, payment_intent_id: str, idempotency_key: str):
    """Refund a captured charge, pulling back the provider transfer and the platform fee."""

    if _should_use_stub():
        return RefundStub(id=_stub_id("re", idempotency_key), status="succeeded")
    return _call(
        "refund",
        stripe.Refund.create,
        payment_intent=payment_intent_id,
        reverse_transfer=True,
        refund_application_fee=True,
        idempotency_key=idempotency_key,
    )


def expire_checkout_session(*, session_id: str, idempotency_key: str):
    if _should_use_stub():
        return CheckoutSessionStub(
            id=session_id,
            payment_intent="",
            payment_status="unpaid",
            url="",
        )
    return _call(
        "release",
        stripe.checkout.Session.expire,
        session_id,
        idempotency_key=idempotency_key,
    )
