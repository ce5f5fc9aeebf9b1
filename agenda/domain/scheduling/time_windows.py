"""Time windows, buffer policy and the buffered-overlap test"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...config import (
    DEFAULT_BUFFER_AFTER_MINUTES,
    DEFAULT_BUFFER_BEFORE_MINUTES,
    DEFAULT_MAX_APPOINTMENTS_PER_DAY,
    DEFAULT_MIN_NOTICE_HOURS,
    DEFAULT_RESERVATION_HOLD_MINUTES,
    DEFAULT_TIMEZONE,
)


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def coerce_datetime(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Parse a stored or serialized date-time into naive UTC. Returns None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_local(value: datetime, tz_name: Optional[str]) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(get_zone(tz_name))


def local_day_bounds(value: datetime, tz_name: Optional[str]) -> tuple[datetime, datetime]:
    """UTC bounds [start, end) of the calendar day containing `value` in the given zone"""
    zone = get_zone(tz_name)
    local_day: date = to_local(value, tz_name).date()
    start_local = datetime(local_day.year, local_day.month, local_day.day, tzinfo=zone)
    end_local = start_local + timedelta(days=1)
    return to_naive_utc(start_local), to_naive_utc(end_local)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "TimeWindow":
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))

    def buffered(self, before_minutes: int, after_minutes: int) -> "TimeWindow":
        return TimeWindow(
            start=self.start - timedelta(minutes=before_minutes),
            end=self.end + timedelta(minutes=after_minutes),
        )

    def overlaps(self, other: "TimeWindow") -> bool:
        # Half-open intervals: touching edges do not conflict
        return self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class BufferPolicy:
    buffer_before_minutes: int = DEFAULT_BUFFER_BEFORE_MINUTES
    buffer_after_minutes: int = DEFAULT_BUFFER_AFTER_MINUTES
    max_appointments_per_day: int = DEFAULT_MAX_APPOINTMENTS_PER_DAY
    min_notice_hours: float = DEFAULT_MIN_NOTICE_HOURS
    reservation_hold_minutes: int = DEFAULT_RESERVATION_HOLD_MINUTES

    @classmethod
    def for_professional(cls, professional) -> "BufferPolicy":
        defaults = cls()

        def pick(value, default):
            return default if value is None else value

        return cls(
            buffer_before_minutes=pick(
                professional.buffer_before_minutes, defaults.buffer_before_minutes
            ),
            buffer_after_minutes=pick(professional.buffer_after_minutes, defaults.buffer_after_minutes),
            max_appointments_per_day=pick(
                professional.max_appointments_per_day, defaults.max_appointments_per_day
            ),
            min_notice_hours=pick(professional.min_notice_hours, defaults.min_notice_hours),
            reservation_hold_minutes=pick(
                professional.reservation_hold_minutes, defaults.reservation_hold_minutes
            ),
        )

    def buffered_window(self, start: datetime, duration_minutes: int) -> TimeWindow:
        return TimeWindow.from_duration(start, duration_minutes).buffered(
            self.buffer_before_minutes, self.buffer_after_minutes
        )


def find_conflict(candidate: TimeWindow, policy: BufferPolicy, entries) -> Optional[object]:
    """
    Return the first entry whose buffered interval intersects `candidate`.

    `candidate` must already be buffered. Entries are anything with `date_time`
    and `duration_minutes` (appointments and holds alike).
    """
    for entry in entries:
        if policy.buffered_window(entry.date_time, entry.duration_minutes).overlaps(candidate):
            return entry
    return None
