"""
Half-open time intervals anchored to absolute instants.

A booking occupies ``[start, end)``: it includes its start and excludes its
end, so back-to-back bookings (one ending at 11:00, the next starting at
11:00) never overlap. Intervals are built from timezone-aware datetimes so
comparisons are between instants, never between strings or floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo


class InvalidInterval(ValueError):
    pass


@dataclass(frozen=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidInterval("Interval bounds must be timezone-aware.")
        if self.end <= self.start:
            raise InvalidInterval("Interval end must be after its start.")

    @classmethod
    def on_date(cls, day: date, time_start: time, time_end: time, tz: tzinfo) -> "TimeInterval":
        if time_end <= time_start:
            raise InvalidInterval("A booking must end after it starts on the same day.")
        return cls(
            datetime.combine(day, time_start, tzinfo=tz),
            datetime.combine(day, time_end, tzinfo=tz),
        )

    @classmethod
    def from_duration(cls, day: date, time_start: time, minutes: int, tz: tzinfo) -> "TimeInterval":
        if minutes <= 0:
            raise InvalidInterval("Duration must be positive.")
        start = datetime.combine(day, time_start, tzinfo=tz)
        end = start + timedelta(minutes=minutes)
        if end.date() != day or end.time() == time(0, 0):
            raise InvalidInterval("A booking must end on the day it starts.")
        return cls(start, end)

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeInterval") -> bool:
        return overlaps(self, other)


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end
