from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from bookings.intervals import InvalidInterval, TimeInterval, overlaps

UTC = timezone.utc
DAY = date(2026, 1, 15)


def interval(start, end, day=DAY, tz=UTC):
    return TimeInterval.on_date(day, start, end, tz)


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((time(14), time(15)), (time(14, 30), time(15, 30)), True),
        ((time(14), time(15)), (time(15), time(16)), False),
        ((time(14), time(15)), (time(13), time(14)), False),
        ((time(9), time(17)), (time(12), time(13)), True),
        ((time(14), time(15)), (time(14), time(15)), True),
        ((time(8), time(9)), (time(10), time(11)), False),
    ],
)
def test_overlap_is_symmetric_and_half_open(a, b, expected):
    first, second = interval(*a), interval(*b)

    assert overlaps(first, second) is expected
    assert overlaps(second, first) is expected


def test_same_times_on_different_days_do_not_overlap():
    assert not overlaps(interval(time(14), time(15)), interval(time(14), time(15), day=date(2026, 1, 16)))


def test_late_evening_and_early_morning_compare_as_instants():
    evening = interval(time(23), time(23, 59))
    next_morning = interval(time(0, 30), time(1, 30), day=date(2026, 1, 16))

    assert not evening.overlaps(next_morning)
    assert evening.start < next_morning.start


def test_intervals_in_different_zones_compare_by_instant():
    new_york = interval(time(9), time(10), tz=ZoneInfo("America/New_York"))
    london = interval(time(14, 30), time(15, 30), tz=ZoneInfo("Europe/London"))

    assert overlaps(new_york, london)


@pytest.mark.parametrize("start, end", [(time(15), time(14)), (time(14), time(14))])
def test_end_must_be_after_start(start, end):
    with pytest.raises(InvalidInterval):
        interval(start, end)


def test_naive_datetimes_are_rejected():
    with pytest.raises(InvalidInterval):
        TimeInterval(datetime(2026, 1, 15, 14), datetime(2026, 1, 15, 15))


def test_from_duration_computes_end_and_duration():
    slot = TimeInterval.from_duration(DAY, time(9, 30), 45, UTC)

    assert slot.end == datetime(2026, 1, 15, 10, 15, tzinfo=UTC)
    assert slot.duration_minutes == 45


@pytest.mark.parametrize("minutes", [60, 120])
def test_from_duration_rejects_crossing_midnight(minutes):
    with pytest.raises(InvalidInterval):
        TimeInterval.from_duration(DAY, time(23, 0), minutes, UTC)
