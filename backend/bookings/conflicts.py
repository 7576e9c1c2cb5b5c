from __future__ import annotations

import logging

from django.db import IntegrityError

from .intervals import TimeInterval
from .models import Booking, ProviderScheduleLock

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "booking_no_confirmed_overlap"
EXCLUSION_VIOLATION_SQLSTATE = "23P01"


def overlapping_bookings(
    provider_id,
    interval: TimeInterval,
    *,
    exclude_booking_id=None,
    statuses=Booking.BLOCKING_STATUSES,
):
    """Bookings of the provider whose half-open interval intersects ``interval``."""
    queryset = Booking.objects.filter(
        provider_id=provider_id,
        status__in=statuses,
        starts_at__lt=interval.end,
        ends_at__gt=interval.start,
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(pk=exclude_booking_id)
    return queryset.order_by("starts_at")


def find_conflicting_booking(
    provider_id,
    interval: TimeInterval,
    *,
    exclude_booking_id=None,
    statuses=Booking.BLOCKING_STATUSES,
) -> Booking | None:
    return overlapping_bookings(
        provider_id,
        interval,
        exclude_booking_id=exclude_booking_id,
        statuses=statuses,
    ).first()


def has_conflict(provider_id, interval: TimeInterval, **kwargs) -> bool:
    return find_conflicting_booking(provider_id, interval, **kwargs) is not None


def lock_provider_schedule(provider_id) -> ProviderScheduleLock:
    """
    Take the provider's schedule lock for the rest of the current transaction.

    Must be called inside ``transaction.atomic()``. Every write that can move a
    booking into a blocking status for this provider goes through this lock, so
    the overlap re-check and the status flip are never interleaved.
    """
    ProviderScheduleLock.objects.get_or_create(provider_id=provider_id)
    return ProviderScheduleLock.objects.select_for_update().get(provider_id=provider_id)


def is_overlap_violation(exc: BaseException) -> bool:
    """True when ``exc`` is the storage-level overlap exclusion firing."""
    if not isinstance(exc, IntegrityError):
        return False
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate == EXCLUSION_VIOLATION_SQLSTATE:
        return True
    return OVERLAP_CONSTRAINT_NAME in str(exc)
