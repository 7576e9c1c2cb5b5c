from datetime import date, time, timezone

import pytest
from django.db import IntegrityError, transaction

from bookings.conflicts import (
    find_conflicting_booking,
    has_conflict,
    is_overlap_violation,
    lock_provider_schedule,
)
from bookings.intervals import TimeInterval
from bookings.models import Booking, ProviderScheduleLock

DAY = date(2026, 1, 15)


def slot(start, end):
    return TimeInterval.on_date(DAY, start, end, timezone.utc)


@pytest.mark.django_db
def test_confirmed_booking_blocks_overlapping_slot(make_booking, provider):
    confirmed = make_booking(status=Booking.CONFIRMED, payment_status=Booking.PAYMENT_CAPTURED)

    assert find_conflicting_booking(provider.id, slot(time(14, 30), time(15, 30))) == confirmed
    assert has_conflict(provider.id, slot(time(13), time(14, 1)))


@pytest.mark.django_db
def test_adjacent_slots_do_not_conflict(make_booking, provider):
    make_booking(status=Booking.CONFIRMED, payment_status=Booking.PAYMENT_CAPTURED)

    assert not has_conflict(provider.id, slot(time(15), time(16)))
    assert not has_conflict(provider.id, slot(time(13), time(14)))


@pytest.mark.django_db
def test_pending_and_terminal_bookings_do_not_block(make_booking, provider):
    make_booking(status=Booking.PENDING_ACCEPTANCE, payment_status=Booking.PAYMENT_AUTHORIZED)
    make_booking(status=Booking.DECLINED, payment_status=Booking.PAYMENT_RELEASED)
    make_booking(status=Booking.CANCELLED)

    assert not has_conflict(provider.id, slot(time(14), time(15)))


@pytest.mark.django_db
def test_active_statuses_include_pending_requests(make_booking, provider):
    pending = make_booking(status=Booking.PENDING_ACCEPTANCE, payment_status=Booking.PAYMENT_AUTHORIZED)

    found = find_conflicting_booking(
        provider.id, slot(time(14), time(15)), statuses=Booking.ACTIVE_STATUSES
    )

    assert found == pending


@pytest.mark.django_db
def test_booking_does_not_conflict_with_itself(make_booking, provider):
    confirmed = make_booking(status=Booking.CONFIRMED, payment_status=Booking.PAYMENT_CAPTURED)

    assert not has_conflict(provider.id, confirmed.interval, exclude_booking_id=confirmed.pk)


@pytest.mark.django_db
def test_other_providers_are_independent(make_booking, customer, other_customer):
    make_booking(status=Booking.CONFIRMED, payment_status=Booking.PAYMENT_CAPTURED)

    assert not has_conflict(other_customer.id, slot(time(14), time(15)))


@pytest.mark.django_db
def test_lock_provider_schedule_creates_lock_row_once(provider):
    with transaction.atomic():
        first = lock_provider_schedule(provider.id)
    with transaction.atomic():
        second = lock_provider_schedule(provider.id)

    assert first.pk == second.pk
    assert ProviderScheduleLock.objects.filter(provider=provider).count() == 1


class FakeDatabaseError(Exception):
    def __init__(self, sqlstate):
        super().__init__("database error")
        self.sqlstate = sqlstate


def test_exclusion_violation_is_recognised_by_sqlstate():
    exc = IntegrityError("conflicting key value violates exclusion constraint")
    exc.__cause__ = FakeDatabaseError("23P01")

    assert is_overlap_violation(exc)


def test_exclusion_violation_is_recognised_by_constraint_name():
    exc = IntegrityError('violates exclusion constraint "booking_no_confirmed_overlap"')

    assert is_overlap_violation(exc)


def test_other_integrity_errors_are_not_overlaps():
    exc = IntegrityError("duplicate key value violates unique constraint")
    exc.__cause__ = FakeDatabaseError("23505")

    assert not is_overlap_violation(exc)
    assert not is_overlap_violation(ValueError("booking_no_confirmed_overlap"))
