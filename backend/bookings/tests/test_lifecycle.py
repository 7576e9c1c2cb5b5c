from datetime import date, time, timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone

from bookings import lifecycle
from bookings.models import Booking
from core.exceptions import (
    BookingConflict,
    InvalidRequest,
    InvalidStateTransition,
    ResourceMissing,
)


def future_day(days=7):
    return timezone.localdate() + timedelta(days=days)


def create(customer, provider, **overrides):
    params = dict(
        customer=customer,
        provider_id=provider.id,
        date=future_day(),
        time_start=time(10, 0),
        time_end=time(11, 0),
        service_price_cents=5000,
        platform_fee_cents=593,
        currency="usd",
        service_name="Haircut",
    )
    params.update(overrides)
    return lifecycle.create_booking(**params)


@pytest.mark.django_db
class TestCreateBooking:
    def test_creates_unpaid_booking_with_price_snapshot(self, customer, provider):
        booking, created = create(customer, provider)

        assert created
        assert booking.status == Booking.AWAITING_PAYMENT
        assert booking.payment_status == Booking.PAYMENT_UNPAID
        assert booking.amount_total_cents == 5593
        assert booking.ends_at - booking.starts_at == timedelta(hours=1)

    def test_rejects_start_in_the_past(self, customer, provider):
        with pytest.raises(InvalidRequest) as excinfo:
            create(customer, provider, date=date(2026, 1, 15))
        assert excinfo.value.code == "start_in_past"

    def test_rejects_end_before_start(self, customer, provider):
        with pytest.raises(InvalidRequest):
            create(customer, provider, time_start=time(11), time_end=time(10))

    def test_rejects_self_booking(self, provider):
        with pytest.raises(InvalidRequest):
            create(provider, provider)

    def test_unknown_provider_is_missing(self, customer, provider):
        with pytest.raises(ResourceMissing):
            create(customer, provider, provider_id=provider.id + 999)

    def test_confirmed_overlap_is_rejected_up_front(self, customer, provider, make_booking):
        make_booking(
            day=future_day(),
            start=time(10, 30),
            end=time(11, 30),
            status=Booking.CONFIRMED,
            payment_status=Booking.PAYMENT_CAPTURED,
        )

        with pytest.raises(BookingConflict):
            create(customer, provider)

    def test_pending_overlap_is_allowed(self, customer, provider, make_booking):
        make_booking(
            day=future_day(),
            start=time(10, 30),
            end=time(11, 30),
            status=Booking.PENDING_ACCEPTANCE,
            payment_status=Booking.PAYMENT_AUTHORIZED,
        )

        booking, created = create(customer, provider)

        assert created

    def test_request_key_replays_original_booking(self, customer, provider):
        first, created_first = create(customer, provider, request_key="req-1")
        second, created_second = create(customer, provider, request_key="req-1", time_start=time(12), time_end=time(13))

        assert created_first and not created_second
        assert first.pk == second.pk
        assert Booking.objects.count() == 1

    def test_request_key_is_scoped_to_customer(self, customer, other_customer, provider):
        first, _ = create(customer, provider, request_key="req-1")
        second, created = create(other_customer, provider, request_key="req-1")

        assert created
        assert first.pk != second.pk


@pytest.mark.django_db
class TestApplyTransition:
    def test_payment_confirmed_moves_to_pending_acceptance(self, make_booking):
        booking = make_booking()

        result = lifecycle.apply_transition(
            booking.pk, "payment_confirmed", fields={"payment_status": Booking.PAYMENT_AUTHORIZED}
        )

        assert result.applied
        assert result.booking.status == Booking.PENDING_ACCEPTANCE
        assert result.booking.payment_status == Booking.PAYMENT_AUTHORIZED

    def test_reapplying_is_a_noop(self, make_booking):
        booking = make_booking(status=Booking.CANCELLED)

        result = lifecycle.apply_transition(booking.pk, "cancel")

        assert not result.applied
        assert result.booking.status == Booking.CANCELLED

    def test_confirmed_booking_cannot_be_cancelled(self, make_booking):
        booking = make_booking(status=Booking.CONFIRMED, payment_status=Booking.PAYMENT_CAPTURED)

        with pytest.raises(InvalidStateTransition) as excinfo:
            lifecycle.apply_transition(booking.pk, "cancel")

        assert excinfo.value.code == "invalid_transition"
        booking.refresh_from_db()
        assert booking.status == Booking.CONFIRMED

    def test_decline_of_unpaid_booking_is_rejected(self, make_booking):
        booking = make_booking()

        with pytest.raises(InvalidStateTransition):
            lifecycle.apply_transition(booking.pk, "decline")

    def test_guard_failure_is_reported(self, make_booking):
        booking = make_booking(status=Booking.PENDING_ACCEPTANCE, payment_status=Booking.PAYMENT_FAILED)

        with pytest.raises(InvalidStateTransition) as excinfo:
            lifecycle.apply_transition(booking.pk, "decline")

        assert excinfo.value.code == "funds_not_secured"

    def test_missing_booking(self, db):
        with pytest.raises(ResourceMissing):
            lifecycle.apply_transition("00000000-0000-0000-0000-000000000000", "cancel")


@pytest.mark.django_db
class TestAccept:
    def test_overlapping_requests_first_accept_wins(self, secured_booking):
        first = secured_booking(start=time(14), end=time(15))
        second = secured_booking(start=time(14, 30), end=time(15, 30))

        result = lifecycle.accept(first.pk)

        assert result.applied
        assert result.booking.status == Booking.CONFIRMED
        with pytest.raises(BookingConflict):
            lifecycle.accept(second.pk)
        second.refresh_from_db()
        assert second.status == Booking.PENDING_ACCEPTANCE

    @pytest.mark.parametrize("winner_index", [0, 1])
    def test_exactly_one_of_two_overlapping_accepts_succeeds(self, secured_booking, winner_index):
        bookings = [
            secured_booking(start=time(14), end=time(15)),
            secured_booking(start=time(14, 30), end=time(15, 30)),
        ]
        winner = bookings[winner_index]
        loser = bookings[1 - winner_index]

        lifecycle.accept(winner.pk)
        with pytest.raises(BookingConflict):
            lifecycle.accept(loser.pk)

        statuses = sorted(Booking.objects.values_list("status", flat=True))
        assert statuses == [Booking.CONFIRMED, Booking.PENDING_ACCEPTANCE]

    def test_accept_before_payment_then_after(self, make_booking):
        booking = make_booking()

        with pytest.raises(InvalidStateTransition):
            lifecycle.accept(booking.pk)

        lifecycle.apply_transition(
            booking.pk, "payment_confirmed", fields={"payment_status": Booking.PAYMENT_AUTHORIZED}
        )
        result = lifecycle.accept(booking.pk)

        assert result.booking.status == Booking.CONFIRMED
        assert result.booking.confirmed_at is not None

    def test_second_accept_is_a_noop(self, secured_booking):
        booking = secured_booking()
        calls = []

        def hook(locked):
            calls.append(locked.pk)
            return {"payment_status": Booking.PAYMENT_CAPTURED}

        lifecycle.accept(booking.pk, before_commit=hook)
        again = lifecycle.accept(booking.pk, before_commit=hook)

        assert not again.applied
        assert again.booking.status == Booking.CONFIRMED
        assert calls == [booking.pk]

    def test_retry_after_losing_slot_surfaces_conflict(self, secured_booking):
        first = secured_booking(start=time(14), end=time(15))
        second = secured_booking(start=time(14, 30), end=time(15, 30))
        lifecycle.accept(first.pk)

        for _ in range(2):
            with pytest.raises(BookingConflict):
                lifecycle.accept(second.pk)

    def test_adjacent_bookings_can_both_be_confirmed(self, secured_booking):
        first = secured_booking(start=time(14), end=time(15))
        second = secured_booking(start=time(15), end=time(16))

        lifecycle.accept(first.pk)
        result = lifecycle.accept(second.pk)

        assert result.booking.status == Booking.CONFIRMED

    def test_hook_failure_leaves_booking_pending(self, secured_booking):
        booking = secured_booking()

        def failing_hook(locked):
            raise InvalidRequest("capture refused")

        with pytest.raises(InvalidRequest):
            lifecycle.accept(booking.pk, before_commit=failing_hook)

        booking.refresh_from_db()
        assert booking.status == Booking.PENDING_ACCEPTANCE

    def test_storage_backstop_is_translated_to_conflict(self, secured_booking, monkeypatch):
        booking = secured_booking()
        original = lifecycle.apply_transition

        def rejecting_transition(booking_id, event, **kwargs):
            if event == "accept":
                raise IntegrityError(
                    'conflicting key value violates exclusion constraint "booking_no_confirmed_overlap"'
                )
            return original(booking_id, event, **kwargs)

        monkeypatch.setattr(lifecycle, "apply_transition", rejecting_transition)

        with pytest.raises(BookingConflict):
            lifecycle.accept(booking.pk)

        booking.refresh_from_db()
        assert booking.status == Booking.PENDING_ACCEPTANCE

    def test_unrelated_integrity_errors_propagate(self, secured_booking, monkeypatch):
        booking = secured_booking()

        def broken_transition(booking_id, event, **kwargs):
            raise IntegrityError("NOT NULL constraint failed")

        monkeypatch.setattr(lifecycle, "apply_transition", broken_transition)

        with pytest.raises(IntegrityError):
            lifecycle.accept(booking.pk)

    def test_declined_booking_cannot_be_accepted(self, make_booking):
        booking = make_booking(status=Booking.DECLINED, payment_status=Booking.PAYMENT_RELEASED)

        with pytest.raises(InvalidStateTransition):
            lifecycle.accept(booking.pk)
