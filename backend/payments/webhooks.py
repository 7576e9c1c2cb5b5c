"""
Stripe webhook verification and dispatch.

Stripe delivers at least once and may report one payment through several
events (``checkout.session.completed`` and ``payment_intent.succeeded``). The
event id is claimed first, then each handler claims the payment artifact and
the effect it applies. Both claims commit with the handler's work or not at
all. A failing handler is recorded as a ``WebhookFailure`` for an operator to
replay; the sender still gets a 2xx.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Callable

import stripe
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking
from bookings.services import payment_flow
from core.exceptions import SignatureInvalid
from providers.payouts import apply_account_update, disconnect_account

from .idempotency import claim_event, claim_payment_object
from .models import WebhookFailure

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
FAILED = "failed"

EFFECT_FUNDS_SECURED = "funds_secured"
EFFECT_PAYMENT_FAILED = "payment_failed"
EFFECT_AUTHORIZATION_EXPIRED = "authorization_expired"


def verify_event(payload: bytes, signature_header: str | None) -> dict:
    """Check the ``Stripe-Signature`` header and return the decoded event."""

    if not signature_header:
        raise SignatureInvalid("Missing Stripe-Signature header.", code="missing_signature")
    try:
        payload_text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            payload_text, signature_header, settings.STRIPE_WEBHOOK_SECRET
        )
        event = json.loads(payload_text)
    except stripe.SignatureVerificationError as exc:
        raise SignatureInvalid(code="bad_signature") from exc
    except ValueError as exc:
        raise SignatureInvalid("Invalid webhook payload.", code="invalid_payload") from exc

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise SignatureInvalid("Invalid webhook payload.", code="invalid_payload")
    return event


def _parse_uuid(value) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _find_booking(*, metadata=None, client_reference_id=None, payment_intent_id=None, checkout_session_id=None):
    booking_id = _parse_uuid((metadata or {}).get("booking_id")) or _parse_uuid(client_reference_id)
    if booking_id is not None:
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is not None:
            return booking
    if payment_intent_id:
        booking = Booking.objects.filter(payment_intent_id=payment_intent_id).first()
        if booking is not None:
            return booking
    if checkout_session_id:
        return Booking.objects.filter(checkout_session_id=checkout_session_id).first()
    return None


def _booking_for_intent(intent: dict):
    booking = _find_booking(metadata=intent.get("metadata"), payment_intent_id=intent.get("id"))
    if booking is None:
        logger.warning("No booking found for payment intent %s", intent.get("id"))
    return booking


def _booking_for_session(session: dict):
    booking = _find_booking(
        metadata=session.get("metadata"),
        client_reference_id=session.get("client_reference_id"),
        checkout_session_id=session.get("id"),
    )
    if booking is None:
        logger.warning("No booking found for checkout session %s", session.get("id"))
    return booking


def _secure_funds(booking: Booking, object_id: str, payment_status: str, payment_intent_id: str) -> None:
    if not claim_payment_object(object_id, EFFECT_FUNDS_SECURED, booking=booking):
        logger.info("Funds for %s already applied to booking %s", object_id, booking.pk)
        return
    payment_flow.confirm_funds_secured(
        booking.pk, payment_status=payment_status, payment_intent_id=payment_intent_id
    )


def handle_intent_authorized(event: dict) -> None:
    intent = event["data"]["object"]
    booking = _booking_for_intent(intent)
    if booking is not None:
        _secure_funds(booking, intent["id"], Booking.PAYMENT_AUTHORIZED, intent["id"])


def handle_intent_succeeded(event: dict) -> None:
    intent = event["data"]["object"]
    booking = _booking_for_intent(intent)
    if booking is not None:
        _secure_funds(booking, intent["id"], Booking.PAYMENT_CAPTURED, intent["id"])


def handle_session_paid(event: dict) -> None:
    session = event["data"]["object"]
    if event["type"] == "checkout.session.completed" and session.get("payment_status") != "paid":
        # Delayed payment methods report the outcome through the async events.
        return
    booking = _booking_for_session(session)
    if booking is None:
        return
    intent_id = session.get("payment_intent") or ""
    _secure_funds(booking, intent_id or session["id"], Booking.PAYMENT_CAPTURED, intent_id)


def handle_intent_failed(event: dict) -> None:
    intent = event["data"]["object"]
    booking = _booking_for_intent(intent)
    if booking is None:
        return
    if booking.payment_intent_id and booking.payment_intent_id != intent["id"]:
        logger.info("Ignoring failure of superseded payment intent %s", intent["id"])
        return
    if not claim_payment_object(intent["id"], EFFECT_PAYMENT_FAILED, booking=booking):
        return
    error = intent.get("last_payment_error") or {}
    payment_flow.record_payment_failure(
        booking.pk, message=error.get("message") or "", code=error.get("code") or ""
    )


def handle_session_failed(event: dict) -> None:
    session = event["data"]["object"]
    booking = _booking_for_session(session)
    if booking is None:
        return
    if booking.checkout_session_id and booking.checkout_session_id != session["id"]:
        logger.info("Ignoring %s for superseded checkout session %s", event["type"], session["id"])
        return
    if not claim_payment_object(session["id"], EFFECT_PAYMENT_FAILED, booking=booking):
        return
    reason = "checkout_expired" if event["type"] == "checkout.session.expired" else "async_payment_failed"
    payment_flow.record_payment_failure(booking.pk, code=reason)


def _expire(booking: Booking, payment_intent_id: str) -> None:
    if not claim_payment_object(payment_intent_id, EFFECT_AUTHORIZATION_EXPIRED, booking=booking):
        return
    payment_flow.expire_authorization(booking.pk)


def handle_intent_canceled(event: dict) -> None:
    intent = event["data"]["object"]
    if intent.get("cancellation_reason") != "automatic":
        return
    booking = _booking_for_intent(intent)
    if booking is not None:
        _expire(booking, intent["id"])


def handle_charge_expired(event: dict) -> None:
    charge = event["data"]["object"]
    intent_id = charge.get("payment_intent")
    if not intent_id:
        return
    booking = _find_booking(metadata=charge.get("metadata"), payment_intent_id=intent_id)
    if booking is None:
        logger.warning("No booking found for expired charge %s", charge.get("id"))
        return
    _expire(booking, intent_id)


def handle_account_updated(event: dict) -> None:
    apply_account_update(event["data"]["object"])


def handle_account_deauthorized(event: dict) -> None:
    account_id = event.get("account")
    if account_id:
        disconnect_account(account_id)


HANDLERS: dict[str, Callable[[dict], None]] = {
    "payment_intent.amount_capturable_updated": handle_intent_authorized,
    "payment_intent.succeeded": handle_intent_succeeded,
    "payment_intent.payment_failed": handle_intent_failed,
    "payment_intent.canceled": handle_intent_canceled,
    "charge.expired": handle_charge_expired,
    "checkout.session.completed": handle_session_paid,
    "checkout.session.async_payment_succeeded": handle_session_paid,
    "checkout.session.async_payment_failed": handle_session_failed,
    "checkout.session.expired": handle_session_failed,
    "account.updated": handle_account_updated,
    "account.application.deauthorized": handle_account_deauthorized,
}


def dispatch_event(event: dict, *, failure: WebhookFailure | None = None) -> str:
    event_id = event["id"]
    event_type = event["type"]
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring unhandled Stripe event %s (%s)", event_id, event_type)
        return IGNORED

    try:
        with transaction.atomic():
            if not claim_event(event_id, event_type):
                outcome = DUPLICATE
            else:
                handler(event)
                outcome = PROCESSED
    except Exception as exc:
        logger.exception("Stripe webhook %s (%s) failed", event_id, event_type)
        _record_failure(event, exc, failure=failure)
        return FAILED

    if outcome == DUPLICATE:
        logger.info("Stripe event %s already processed", event_id)
    if failure is not None:
        WebhookFailure.objects.filter(pk=failure.pk).update(resolved_at=timezone.now())
    return outcome


def _record_failure(event: dict, exc: Exception, *, failure: WebhookFailure | None) -> None:
    error = f"{type(exc).__name__}: {exc}"
    if failure is not None:
        WebhookFailure.objects.filter(pk=failure.pk).update(
            attempts=F("attempts") + 1, error=error, last_attempt_at=timezone.now()
        )
        return
    WebhookFailure.objects.create(
        event_id=event["id"],
        event_type=event["type"],
        payload=event,
        error=error,
    )


def replay_failure(failure: WebhookFailure) -> str:
    if failure.is_resolved:
        return DUPLICATE
    logger.info("Replaying Stripe event %s (%s)", failure.event_id, failure.event_type)
    return dispatch_event(failure.payload, failure=failure)
