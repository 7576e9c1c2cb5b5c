"""
Booking state machine.

Every transition is a single conditional UPDATE keyed on the booking id, the
allowed source statuses and the transition guard. When no row matches, the
booking is re-read: a booking already in the target state is an idempotent
no-op, anything else is an invalid transition. Concurrent callers therefore
never both apply the same transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import (
    BookingConflict,
    InvalidRequest,
    InvalidStateTransition,
    ResourceMissing,
)

from .conflicts import find_conflicting_booking, is_overlap_violation, lock_provider_schedule
from .intervals import InvalidInterval, TimeInterval
from .models import Booking

logger = logging.getLogger(__name__)

FUNDS_SECURED_GUARD = Q(payment_status__in=Booking.FUNDS_SECURED)


@dataclass(frozen=True)
class Transition:
    event: str
    sources: tuple
    target: str
    guard: Optional[Q] = None
    guard_code: str = ""


@dataclass
class TransitionResult:
    booking: Booking
    applied: bool
    extra: dict = field(default_factory=dict)


PAYMENT_CONFIRMED = Transition("payment_confirmed", (Booking.AWAITING_PAYMENT,), Booking.PENDING_ACCEPTANCE)
ACCEPT = Transition(
    "accept",
    (Booking.PENDING_ACCEPTANCE,),
    Booking.CONFIRMED,
    guard=FUNDS_SECURED_GUARD,
    guard_code="funds_not_secured",
)
DECLINE = Transition(
    "decline",
    (Booking.PENDING_ACCEPTANCE,),
    Booking.DECLINED,
    guard=FUNDS_SECURED_GUARD,
    guard_code="funds_not_secured",
)
CANCEL = Transition("cancel", (Booking.AWAITING_PAYMENT, Booking.PENDING_ACCEPTANCE), Booking.CANCELLED)
EXPIRE = Transition("expire", (Booking.PENDING_ACCEPTANCE,), Booking.EXPIRED)

TRANSITIONS = {t.event: t for t in (PAYMENT_CONFIRMED, ACCEPT, DECLINE, CANCEL, EXPIRE)}


def get_booking(booking_id) -> Booking:
    booking = Booking.objects.filter(pk=booking_id).first()
    if booking is None:
        raise ResourceMissing("Booking not found.", code="booking_not_found")
    return booking


def apply_transition(booking_id, event: str, *, fields: dict | None = None) -> TransitionResult:
    transition = TRANSITIONS[event]
    updates = {"status": transition.target, "updated_at": timezone.now()}
    updates.update(fields or {})

    queryset = Booking.objects.filter(pk=booking_id, status__in=transition.sources)
    if transition.guard is not None:
        queryset = queryset.filter(transition.guard)
    updated = queryset.update(**updates)

    booking = get_booking(booking_id)
    if updated:
        logger.info("Booking %s %s -> %s", booking_id, event, transition.target)
        return TransitionResult(booking, applied=True)

    if booking.status == transition.target:
        logger.debug("Booking %s already %s; %s is a no-op", booking_id, booking.status, event)
        return TransitionResult(booking, applied=False)

    if booking.status in transition.sources:
        raise InvalidStateTransition(
            f"Cannot {event} this booking until payment has been secured.",
            code=transition.guard_code or "guard_failed",
        )
    raise InvalidStateTransition(
        f"Cannot {event} a booking that is {booking.get_status_display().lower()}.",
        code="invalid_transition",
        status=booking.status,
    )


def validate_participants(customer, provider_id) -> None:
    if customer.pk == provider_id:
        raise InvalidRequest("Providers cannot book themselves.", code="self_booking")
    if not get_user_model().objects.filter(pk=provider_id).exists():
        raise ResourceMissing("Provider not found.", code="provider_not_found")


def booking_interval(day, time_start, time_end) -> TimeInterval:
    try:
        return TimeInterval.on_date(day, time_start, time_end, ZoneInfo(settings.BOOKING_TIME_ZONE))
    except InvalidInterval as exc:
        raise InvalidRequest(str(exc), code="invalid_time_range") from exc


def create_booking(
    *,
    customer,
    provider_id,
    date,
    time_start,
    time_end,
    service_price_cents: int,
    platform_fee_cents: int,
    currency: str,
    service=None,
    service_name: str = "",
    payment_flow: str = Booking.FLOW_PAYMENT_SHEET,
    notes: str = "",
    request_key: str = "",
) -> tuple[Booking, bool]:
    """
    Persist a new AWAITING_PAYMENT booking.

    Returns ``(booking, created)``. A repeated ``request_key`` from the same
    customer returns the booking created by the first request.
    """

    if request_key:
        existing = Booking.objects.filter(customer=customer, request_key=request_key).first()
        if existing is not None:
            return existing, False

    validate_participants(customer, provider_id)
    interval = booking_interval(date, time_start, time_end)
    if interval.start <= timezone.now():
        raise InvalidRequest("Requested time must be in the future.", code="start_in_past")

    # Advisory only; acceptance re-checks under the provider lock.
    conflict = find_conflicting_booking(provider_id, interval)
    if conflict is not None:
        raise BookingConflict(code="slot_unavailable")

    booking = Booking(
        customer=customer,
        provider_id=provider_id,
        service=service,
        service_name=service_name,
        date=date,
        time_start=time_start,
        time_end=time_end,
        service_price_cents=service_price_cents,
        platform_fee_cents=platform_fee_cents,
        amount_total_cents=service_price_cents + platform_fee_cents,
        currency=currency,
        payment_flow=payment_flow,
        notes=notes,
        request_key=request_key,
    )
    try:
        with transaction.atomic():
            booking.save()
    except IntegrityError:
        if not request_key:
            raise
        existing = Booking.objects.filter(customer=customer, request_key=request_key).first()
        if existing is None:
            raise
        return existing, False

    logger.info(
        "Booking %s created for provider %s on %s %s-%s",
        booking.pk,
        provider_id,
        date,
        time_start,
        time_end,
    )
    return booking, True


def accept(booking_id, *, before_commit: Callable[[Booking], dict] | None = None) -> TransitionResult:
    """
    Move a PENDING_ACCEPTANCE booking to CONFIRMED.

    Runs under the provider's schedule lock: the overlap re-check, the
    ``before_commit`` hook (payment capture) and the status flip commit
    together or not at all. The hook returns extra fields for the update.
    """

    provider_id = get_booking(booking_id).provider_id
    with transaction.atomic():
        lock_provider_schedule(provider_id)
        booking = Booking.objects.select_for_update().get(pk=booking_id)

        if booking.status == Booking.CONFIRMED:
            return TransitionResult(booking, applied=False)
        if booking.status != Booking.PENDING_ACCEPTANCE:
            raise InvalidStateTransition(
                f"Cannot accept a booking that is {booking.get_status_display().lower()}.",
                code="invalid_transition",
                status=booking.status,
            )

        conflict = find_conflicting_booking(
            booking.provider_id, booking.interval, exclude_booking_id=booking.pk
        )
        if conflict is not None:
            logger.info("Booking %s lost its slot to confirmed booking %s", booking.pk, conflict.pk)
            raise BookingConflict(code="slot_taken")

        if not booking.funds_secured:
            raise InvalidStateTransition(
                "Cannot accept this booking until payment has been secured.",
                code="funds_not_secured",
            )

        extra = before_commit(booking) if before_commit else {}
        fields = {"confirmed_at": timezone.now()}
        fields.update(extra or {})
        try:
            with transaction.atomic():
                result = apply_transition(booking.pk, "accept", fields=fields)
        except IntegrityError as exc:
            if is_overlap_violation(exc):
                logger.warning("Overlap backstop rejected accept of booking %s", booking.pk)
                raise BookingConflict(code="slot_taken") from exc
            raise
    result.extra = extra or {}
    return result
