"""
Payment orchestration around the booking state machine.

Money-moving calls are keyed deterministically from the booking id and the
operation (``booking:<id>:capture``) or an attempt counter
(``booking:<id>:authorize:<n>``), so a retried request or a re-run after a crash
produces at most one financial effect. The attempt counter only advances after
a failed payment; retrying ``start_payment`` replays the same gateway artifact.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import F

from bookings import lifecycle
from bookings.lifecycle import TransitionResult
from bookings.models import Booking
from catalog.pricing import calculate_booking_amounts
from catalog.resolution import resolve_service_details
from core.exceptions import (
    BookingError,
    InvalidStateTransition,
    PaymentAuthorizationExpired,
    PaymentFailed,
    PermissionDenied,
    UpstreamUnavailable,
)
from payments.ledger import record_operation
from payments.models import Payment
from providers.payouts import require_payout_account

from . import payments as gateway

logger = logging.getLogger(__name__)


def authorize_key(booking: Booking) -> str:
    return f"booking:{booking.pk}:authorize:{booking.payment_attempt}"


def checkout_key(booking: Booking) -> str:
    return f"booking:{booking.pk}:checkout:{booking.payment_attempt}"


def capture_key(booking: Booking) -> str:
    return f"booking:{booking.pk}:capture"


def release_key(booking: Booking) -> str:
    return f"booking:{booking.pk}:release"


def refund_key(booking: Booking) -> str:
    return f"booking:{booking.pk}:refund"


def _payment_key(booking: Booking) -> str:
    if booking.payment_flow == Booking.FLOW_CHECKOUT:
        return checkout_key(booking)
    return authorize_key(booking)


def _payment_kind(booking: Booking) -> str:
    if booking.payment_flow == Booking.FLOW_CHECKOUT:
        return Payment.KIND_CHECKOUT
    return Payment.KIND_AUTHORIZATION


@dataclass
class PaymentSession:
    booking: Booking
    flow: str
    payment_intent_id: str = ""
    client_secret: Optional[str] = None
    checkout_session_id: str = ""
    checkout_url: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "flow": self.flow,
            "payment_intent_id": self.payment_intent_id or None,
            "client_secret": self.client_secret,
            "checkout_session_id": self.checkout_session_id or None,
            "checkout_url": self.checkout_url,
            "idempotency_key": _payment_key(self.booking),
        }


def request_booking(
    *,
    customer,
    date,
    time_start,
    time_end=None,
    service_id=None,
    provider_id=None,
    service_name=None,
    service_price_cents=None,
    service_duration_minutes=None,
    custom_price_cents=None,
    payment_flow: str = Booking.FLOW_PAYMENT_SHEET,
    notes: str = "",
    request_key: str = "",
) -> tuple[Booking, bool, PaymentSession]:
    """
    Create a booking and open its payment in one call.

    The price is always resolved server-side. The provider's payout account is
    checked before any row is written so an unpayable booking is never created.
    """

    if request_key:
        existing = Booking.objects.filter(customer=customer, request_key=request_key).first()
        if existing is not None:
            return existing, False, current_payment_session(existing)

    resolved = resolve_service_details(
        time_start=time_start,
        time_end=time_end,
        service_id=service_id,
        provider_id=provider_id,
        service_name=service_name,
        service_price_cents=service_price_cents,
        service_duration_minutes=service_duration_minutes,
        custom_price_cents=custom_price_cents,
    )
    lifecycle.validate_participants(customer, resolved.provider_id)
    amounts = calculate_booking_amounts(resolved.price_cents)
    require_payout_account(resolved.provider_id)

    booking, created = lifecycle.create_booking(
        customer=customer,
        provider_id=resolved.provider_id,
        date=date,
        time_start=time_start,
        time_end=resolved.time_end,
        service_price_cents=amounts.service_price_cents,
        platform_fee_cents=amounts.platform_fee_cents,
        currency=amounts.currency,
        service=resolved.service,
        service_name=resolved.service_name,
        payment_flow=payment_flow,
        notes=notes,
        request_key=request_key,
    )
    return booking, created, start_payment(booking)


def current_payment_session(booking: Booking) -> PaymentSession:
    """Session for a replayed request; re-opens the payment only while it is still owed."""
    if booking.status == Booking.AWAITING_PAYMENT and not booking.funds_secured:
        return start_payment(booking)
    return PaymentSession(
        booking=booking,
        flow=booking.payment_flow,
        payment_intent_id=booking.payment_intent_id,
        checkout_session_id=booking.checkout_session_id,
    )


def start_payment(booking: Booking, *, flow: str | None = None) -> PaymentSession:
    booking = lifecycle.get_booking(booking.pk)
    if booking.status != Booking.AWAITING_PAYMENT or booking.funds_secured:
        raise InvalidStateTransition(
            "Payment has already been secured for this booking.", code="payment_not_required"
        )

    account = require_payout_account(booking.provider_id)
    flow = flow or booking.payment_flow
    if flow != booking.payment_flow:
        Booking.objects.filter(pk=booking.pk).update(payment_flow=flow)
        booking.payment_flow = flow

    if flow == Booking.FLOW_CHECKOUT:
        key = checkout_key(booking)
        try:
            session = gateway.create_checkout_session(
                booking=booking, destination_account=account.account_id, idempotency_key=key
            )
        except PaymentFailed as exc:
            record_payment_failure(booking.pk, message=exc.message, code=exc.code or "")
            raise
        intent_id = getattr(session, "payment_intent", None) or ""
        Booking.objects.filter(pk=booking.pk, status=Booking.AWAITING_PAYMENT).update(
            checkout_session_id=session.id,
            payment_intent_id=intent_id,
            payment_status=Booking.PAYMENT_UNPAID,
        )
        record_operation(
            booking,
            kind=Payment.KIND_CHECKOUT,
            idempotency_key=key,
            status=Payment.STATUS_PENDING,
            payment_intent=intent_id,
            checkout_session=session.id,
        )
        booking.refresh_from_db()
        return PaymentSession(
            booking=booking,
            flow=flow,
            payment_intent_id=intent_id,
            checkout_session_id=session.id,
            checkout_url=getattr(session, "url", None),
        )

    key = authorize_key(booking)
    try:
        intent = gateway.create_payment_intent(
            booking=booking, destination_account=account.account_id, idempotency_key=key
        )
    except PaymentFailed as exc:
        record_payment_failure(booking.pk, message=exc.message, code=exc.code or "")
        raise
    Booking.objects.filter(pk=booking.pk, status=Booking.AWAITING_PAYMENT).update(
        payment_intent_id=intent.id,
        payment_status=Booking.PAYMENT_UNPAID,
    )
    record_operation(
        booking,
        kind=Payment.KIND_AUTHORIZATION,
        idempotency_key=key,
        status=Payment.STATUS_PENDING,
        payment_intent=intent.id,
    )
    booking.refresh_from_db()
    return PaymentSession(
        booking=booking,
        flow=flow,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
    )


def confirm_funds_secured(
    booking_id,
    *,
    payment_status: str,
    payment_intent_id: str = "",
) -> TransitionResult:
    """Apply a gateway report that the booking's funds are authorized or captured."""

    if payment_status not in Booking.FUNDS_SECURED:
        raise ValueError(f"{payment_status} does not secure funds")

    booking = lifecycle.get_booking(booking_id)
    if booking.is_terminal:
        return _compensate_late_payment(booking, payment_status, payment_intent_id)

    if booking.status != Booking.AWAITING_PAYMENT:
        if payment_status == Booking.PAYMENT_CAPTURED:
            Booking.objects.filter(pk=booking.pk, payment_status=Booking.PAYMENT_AUTHORIZED).update(
                payment_status=Booking.PAYMENT_CAPTURED
            )
        booking.refresh_from_db()
        return TransitionResult(booking, applied=False)

    fields = {"payment_status": payment_status}
    if payment_intent_id:
        fields["payment_intent_id"] = payment_intent_id
    try:
        result = lifecycle.apply_transition(booking.pk, "payment_confirmed", fields=fields)
    except InvalidStateTransition:
        booking = lifecycle.get_booking(booking_id)
        if booking.is_terminal:
            return _compensate_late_payment(booking, payment_status, payment_intent_id)
        raise

    if result.applied:
        record_operation(
            result.booking,
            kind=_payment_kind(result.booking),
            idempotency_key=_payment_key(result.booking),
            status=Payment.STATUS_SUCCEEDED,
            payment_intent=result.booking.payment_intent_id,
            checkout_session=result.booking.checkout_session_id,
        )
    return result


def _compensate_late_payment(booking: Booking, payment_status: str, payment_intent_id: str) -> TransitionResult:
    logger.warning(
        "Funds secured for booking %s after it became %s; releasing them",
        booking.pk,
        booking.status,
    )
    updates = {"payment_status": payment_status}
    if payment_intent_id:
        updates["payment_intent_id"] = payment_intent_id
    Booking.objects.filter(pk=booking.pk, payment_status__in=(Booking.PAYMENT_UNPAID, Booking.PAYMENT_FAILED)).update(
        **updates
    )
    booking = release_funds(booking)
    return TransitionResult(booking, applied=False)


def record_payment_failure(booking_id, *, message: str = "", code: str = "") -> Booking:
    """The gateway rejected the payment; the booking stays payable with a fresh attempt."""

    booking = lifecycle.get_booking(booking_id)
    if booking.status != Booking.AWAITING_PAYMENT:
        logger.info("Ignoring payment failure for booking %s in status %s", booking.pk, booking.status)
        return booking

    record_operation(
        booking,
        kind=_payment_kind(booking),
        idempotency_key=_payment_key(booking),
        status=Payment.STATUS_FAILED,
        payment_intent=booking.payment_intent_id,
        checkout_session=booking.checkout_session_id,
        error_message=message or code,
    )
    Booking.objects.filter(
        pk=booking.pk,
        status=Booking.AWAITING_PAYMENT,
        payment_attempt=booking.payment_attempt,
    ).update(
        payment_status=Booking.PAYMENT_FAILED,
        payment_attempt=F("payment_attempt") + 1,
    )
    logger.info("Payment attempt %s failed for booking %s: %s", booking.payment_attempt, booking.pk, code or message)
    booking.refresh_from_db()
    return booking


def expire_authorization(booking_id) -> TransitionResult:
    """The gateway reports the authorization hold lapsed before capture."""

    booking = lifecycle.get_booking(booking_id)
    if booking.status == Booking.AWAITING_PAYMENT:
        return TransitionResult(record_payment_failure(booking.pk, code="authorization_expired"), applied=False)
    if booking.status in (Booking.DECLINED, Booking.CANCELLED):
        Booking.objects.filter(pk=booking.pk, payment_status=Booking.PAYMENT_AUTHORIZED).update(
            payment_status=Booking.PAYMENT_RELEASED
        )
        booking.refresh_from_db()
        return TransitionResult(booking, applied=False)
    if booking.status == Booking.CONFIRMED:
        logger.info("Ignoring authorization expiry for confirmed booking %s", booking.pk)
        return TransitionResult(booking, applied=False)

    return lifecycle.apply_transition(
        booking.pk, "expire", fields={"payment_status": Booking.PAYMENT_FAILED}
    )


def accept_booking(booking_id, actor) -> Booking:
    booking = lifecycle.get_booking(booking_id)
    if actor.pk != booking.provider_id:
        raise PermissionDenied("Only the provider can accept this booking.")

    captured: dict = {}

    def capture(locked: Booking) -> dict:
        if locked.payment_status == Booking.PAYMENT_CAPTURED:
            return {}
        intent = gateway.capture_payment_intent(
            payment_intent_id=locked.payment_intent_id,
            idempotency_key=capture_key(locked),
        )
        captured["payment_intent"] = intent.id
        return {"payment_status": Booking.PAYMENT_CAPTURED}

    try:
        result = lifecycle.accept(booking.pk, before_commit=capture)
    except PaymentAuthorizationExpired as exc:
        record_operation(
            booking,
            kind=Payment.KIND_CAPTURE,
            idempotency_key=capture_key(booking),
            status=Payment.STATUS_FAILED,
            payment_intent=booking.payment_intent_id,
            error_message=exc.message,
        )
        expire_authorization(booking.pk)
        raise
    except (PaymentFailed, UpstreamUnavailable) as exc:
        record_operation(
            booking,
            kind=Payment.KIND_CAPTURE,
            idempotency_key=capture_key(booking),
            status=Payment.STATUS_FAILED,
            payment_intent=booking.payment_intent_id,
            error_message=exc.message,
            needs_reconciliation=True,
        )
        if isinstance(exc, UpstreamUnavailable):
            raise
        raise PaymentFailed(
            "Payment capture failed. The booking was not confirmed.",
            code=exc.code or "capture_failed",
        ) from exc
    except BookingError:
        if captured:
            _refund_uncommitted_capture(booking, captured["payment_intent"])
        raise

    if captured:
        record_operation(
            result.booking,
            kind=Payment.KIND_CAPTURE,
            idempotency_key=capture_key(result.booking),
            status=Payment.STATUS_SUCCEEDED,
            payment_intent=captured["payment_intent"],
        )
    return result.booking


def _refund_uncommitted_capture(booking: Booking, payment_intent_id: str) -> None:
    """Funds were captured but the confirmation rolled back; give them back."""

    key = refund_key(booking)
    try:
        refund = gateway.refund_payment_intent(payment_intent_id=payment_intent_id, idempotency_key=key)
    except BookingError as exc:
        record_operation(
            booking,
            kind=Payment.KIND_REFUND,
            idempotency_key=key,
            status=Payment.STATUS_FAILED,
            payment_intent=payment_intent_id,
            error_message=f"Refund after rolled-back capture failed: {exc.message}",
            needs_reconciliation=True,
        )
        return
    Booking.objects.filter(pk=booking.pk).update(payment_status=Booking.PAYMENT_REFUNDED)
    record_operation(
        booking,
        kind=Payment.KIND_REFUND,
        idempotency_key=key,
        status=Payment.STATUS_SUCCEEDED,
        payment_intent=payment_intent_id,
        refund_id=refund.id,
    )
    logger.warning("Refunded capture for booking %s after its confirmation was rejected", booking.pk)


def decline_booking(booking_id, actor, *, reason: str = "") -> Booking:
    booking = lifecycle.get_booking(booking_id)
    if actor.pk != booking.provider_id:
        raise PermissionDenied("Only the provider can decline this booking.")
    result = lifecycle.apply_transition(booking.pk, "decline", fields={"decline_reason": reason})
    return release_funds(result.booking)


def cancel_booking(booking_id, actor, *, reason: str = "") -> Booking:
    booking = lifecycle.get_booking(booking_id)
    if actor.pk != booking.customer_id:
        raise PermissionDenied("Only the customer can cancel this booking.")
    result = lifecycle.apply_transition(booking.pk, "cancel", fields={"cancellation_reason": reason})
    return release_funds(result.booking)


def release_funds(booking: Booking) -> Booking:
    """
    Best-effort release of whatever the gateway holds for a terminal booking.

    A failure is logged and recorded for manual reconciliation; it never
    undoes the booking's transition. Calling this again retries the release.
    """

    booking = lifecycle.get_booking(booking.pk)
    if booking.payment_status == Booking.PAYMENT_AUTHORIZED:
        kind, key, target = Payment.KIND_RELEASE, release_key(booking), Booking.PAYMENT_RELEASED
        operation = gateway.cancel_payment_intent
    elif booking.payment_status == Booking.PAYMENT_CAPTURED:
        kind, key, target = Payment.KIND_REFUND, refund_key(booking), Booking.PAYMENT_REFUNDED
        operation = gateway.refund_payment_intent
    else:
        _abandon_unpaid_artifacts(booking)
        return booking

    try:
        artifact = operation(payment_intent_id=booking.payment_intent_id, idempotency_key=key)
    except BookingError as exc:
        logger.error("Releasing funds for booking %s failed: %s", booking.pk, exc.message)
        record_operation(
            booking,
            kind=kind,
            idempotency_key=key,
            status=Payment.STATUS_FAILED,
            payment_intent=booking.payment_intent_id,
            error_message=exc.message,
            needs_reconciliation=True,
        )
        return booking

    Booking.objects.filter(pk=booking.pk, payment_status=booking.payment_status).update(payment_status=target)
    record_operation(
        booking,
        kind=kind,
        idempotency_key=key,
        status=Payment.STATUS_SUCCEEDED,
        payment_intent=booking.payment_intent_id,
        refund_id=artifact.id if kind == Payment.KIND_REFUND else "",
    )
    booking.refresh_from_db()
    logger.info("Released funds for booking %s (%s)", booking.pk, target)
    return booking


def _abandon_unpaid_artifacts(booking: Booking) -> None:
    """Stop an unpaid checkout session or intent from being paid later."""

    key = release_key(booking)
    try:
        if booking.payment_flow == Booking.FLOW_CHECKOUT and booking.checkout_session_id:
            gateway.expire_checkout_session(session_id=booking.checkout_session_id, idempotency_key=key)
        elif booking.payment_intent_id:
            gateway.cancel_payment_intent(payment_intent_id=booking.payment_intent_id, idempotency_key=key)
    except BookingError as exc:
        # A late payment is still released when its webhook arrives.
        logger.warning("Could not void unpaid payment for booking %s: %s", booking.pk, exc.message)
