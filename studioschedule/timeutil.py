"""
Time helpers.

Minute-of-day offsets are the canonical representation; hour/minute pairs
are only used for display and for matching provisional placements.
"""

from __future__ import annotations

from studioschedule.model import TimePoint


def to_minutes_since_midnight(hour: int, minute: int) -> int:
    return hour * 60 + minute


def from_minutes_since_midnight(total: int) -> tuple[int, int]:
    """
    Split a minute offset into (hour, minute).
    """
    return total // 60, total % 60


def add_minutes(point: TimePoint, minutes: int) -> TimePoint:
    """
    Add minutes to a TimePoint, carrying overflow into the hour.
    `day` is kept as is; it is derived from the date elsewhere.
    """
    hour, minute = from_minutes_since_midnight(to_minutes_since_midnight(point.hour, point.minute) + minutes)
    return TimePoint(hour=hour, minute=minute, day=point.day)


def format_time(hour: int, minute: int) -> str:
    """
    Format as 12-hour clock, e.g. 9:05 AM, 12:00 PM.
    """
    period = "AM" if hour % 24 < 12 else "PM"
    display = hour % 12 or 12
    return f"{display}:{minute:02d} {period}"


def format_minutes(total: int) -> str:
    return format_time(*from_minutes_since_midnight(total))


def format_range(start_minutes: int, end_minutes: int) -> str:
    return f"{format_minutes(start_minutes)} - {format_minutes(end_minutes)}"


def parse_clock(text: str) -> int:
    """
    Convert 'HH:MM' to minutes since midnight.
    Raises ValueError for invalid formats.
    """
    parts = str(text).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {text!r}")
    h = int(parts[0])
    m = int(parts[1])
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"Invalid time value: {text!r}")
    return to_minutes_since_midnight(h, m)
