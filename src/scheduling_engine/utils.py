"""Utility functions for time arithmetic and identifiers."""

import re
from datetime import date, datetime, time, timedelta

DAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

_ID_UNSAFE = re.compile(r"[^A-Za-z0-9_.:-]+")


def parse_time(value: str | time) -> time:
    """Parse 'HH:MM' (or 'HH:MM:SS') into a time object."""
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp."""
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.strip())


def parse_date(value: str | date) -> date:
    """Parse an ISO-8601 date (a full timestamp is truncated to its date)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def day_of_week(moment: datetime | date) -> int:
    """Day of week with Sunday=0 ... Saturday=6."""
    return (moment.weekday() + 1) % 7


def day_name_to_index(name: str) -> int | None:
    """Convert 'monday' / 'Mon' into a Sunday=0 index."""
    normalized = name.strip().lower()
    for index, day_name in enumerate(DAY_NAMES):
        if normalized in (day_name, day_name[:3]):
            return index
    return None


def minutes_between(start: datetime, end: datetime) -> float:
    """Length of [start, end) in minutes."""
    return (end - start).total_seconds() / 60


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def gap_minutes(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> float:
    """Free minutes between two intervals, negative when they overlap."""
    if a_end <= b_start:
        return minutes_between(a_end, b_start)
    if b_end <= a_start:
        return minutes_between(b_end, a_start)
    return -minutes_between(max(a_start, b_start), min(a_end, b_end))


def covers(
    outer_start: datetime, outer_end: datetime, inner_start: datetime, inner_end: datetime
) -> bool:
    """Whether [inner_start, inner_end) lies within [outer_start, outer_end)."""
    return outer_start <= inner_start and inner_end <= outer_end


def time_of_day_overlap(
    start: datetime, end: datetime, window_start: time, window_end: time
) -> float:
    """Minutes of [start, end) falling inside a daily time-of-day window.

    Only the start date's window is considered; classes do not span midnight.
    """
    day = start.date()
    w_start = datetime.combine(day, window_start, tzinfo=start.tzinfo)
    w_end = datetime.combine(day, window_end, tzinfo=start.tzinfo)
    overlap_start = max(start, w_start)
    overlap_end = min(end, w_end)
    if overlap_end <= overlap_start:
        return 0.0
    return minutes_between(overlap_start, overlap_end)


def iter_dates(start: date, end: date):
    """Yield each date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def make_id(prefix: str, *parts: object) -> str:
    """Build a deterministic identifier from its parts."""
    tokens = [prefix]
    for part in parts:
        if isinstance(part, datetime):
            part = part.strftime("%Y%m%d%H%M")
        tokens.append(_ID_UNSAFE.sub("_", str(part)))
    return "-".join(tokens)
