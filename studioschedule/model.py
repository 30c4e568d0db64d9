"""
Central data model definitions used across the project.

This module defines the canonical structure of rooms, routines and
scheduled placements so that:
- the conflict checks, the session and the differ share the same field names
- dates are plain (year, month, day) keys without any timezone behaviour
- malformed placements are rejected before any conflict check runs
"""

from __future__ import annotations

import calendar
import itertools
import time
from dataclasses import dataclass, field, replace
from typing import FrozenSet, List, Optional, Tuple

from studioschedule.errors import MalformedPlacementError

MINUTES_PER_DAY = 24 * 60
PROVISIONAL_PREFIX = "scheduled-"

_provisional_counter = itertools.count(1)


@dataclass(frozen=True, order=True)
class DateKey:
    """
    A wall-clock calendar date used as a grouping key.

    Compared field by field (year, month, day), never through a datetime.
    """

    year: int
    month: int
    day: int

    def __post_init__(self) -> None:
        for name in ("year", "month", "day"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise MalformedPlacementError(f"Invalid date {name}: {value!r}")
        if not 1 <= self.month <= 12:
            raise MalformedPlacementError(f"Invalid month: {self.month}")
        last = calendar.monthrange(self.year, self.month)[1]
        if not 1 <= self.day <= last:
            raise MalformedPlacementError(f"Invalid day: {self.year}-{self.month:02d}-{self.day}")

    @classmethod
    def parse(cls, text: str) -> "DateKey":
        """
        Parse 'YYYY-MM-DD'. Longer ISO timestamps ('2024-06-01T00:00:00.000Z')
        are accepted and read by their date prefix (UTC midnight semantics).
        """
        raw = str(text or "").strip()[:10]
        parts = raw.split("-")
        if len(parts) != 3:
            raise MalformedPlacementError(f"Invalid date format: {text!r}")
        try:
            year, month, day = (int(p) for p in parts)
        except ValueError:
            raise MalformedPlacementError(f"Invalid date format: {text!r}") from None
        return cls(year, month, day)

    def iso(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def weekday(self) -> int:
        # 0 = Sunday ... 6 = Saturday, matching the calendar column index
        return (calendar.weekday(self.year, self.month, self.day) + 1) % 7

    def __str__(self) -> str:
        return self.iso()


@dataclass(frozen=True)
class TimePoint:
    """
    A point within a day. `day` is informational only.
    """

    hour: int
    minute: int
    day: int = 0


@dataclass(frozen=True)
class Interval:
    """
    One time range on one date. Never wraps across midnight.
    """

    date: DateKey
    start_minutes: int
    duration: int

    def __post_init__(self) -> None:
        validate_duration(self.duration)
        if isinstance(self.start_minutes, bool) or not isinstance(self.start_minutes, int):
            raise MalformedPlacementError(f"Start must be whole minutes, got {self.start_minutes!r}")
        if self.start_minutes < 0:
            raise MalformedPlacementError(f"Start must not be negative, got {self.start_minutes}")
        if self.start_minutes + self.duration > MINUTES_PER_DAY:
            raise MalformedPlacementError(
                f"Rehearsal must end on the same day ({self.start_minutes} + {self.duration} minutes)"
            )

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration

    @property
    def start(self) -> TimePoint:
        return TimePoint(self.start_minutes // 60, self.start_minutes % 60, self.date.weekday())

    @property
    def end(self) -> TimePoint:
        return TimePoint(self.end_minutes // 60, self.end_minutes % 60, self.date.weekday())


@dataclass
class Dancer:
    id: str
    name: str
    classes: List[str] = field(default_factory=list)


@dataclass
class Teacher:
    id: str
    name: str
    email: Optional[str] = None


@dataclass
class Genre:
    id: str
    name: str


@dataclass
class Level:
    id: str
    name: str
    color: str


@dataclass
class Routine:
    """
    A choreographed piece. A template for rehearsals, it occupies no time itself.

    `duration` is the default length used when the routine is dropped onto the calendar.
    """

    id: str
    title: str
    teacher: Teacher
    genre: Genre
    duration: int
    dancer_ids: FrozenSet[str] = frozenset()
    level: Optional[Level] = None
    color: str = "#9CA3AF"
    is_inactive: bool = False
    notes: Optional[str] = None


@dataclass
class Room:
    """
    A studio. `is_active` only controls visibility; inactive rooms keep their placements.
    """

    id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class Placement:
    """
    One concrete rehearsal of a routine in a room on a date.

    The id is provisional (client generated, see new_provisional_id) until the
    store assigns a persisted one.
    """

    id: str
    routine_id: str
    room_id: str
    interval: Interval

    @property
    def date(self) -> DateKey:
        return self.interval.date

    @property
    def start_minutes(self) -> int:
        return self.interval.start_minutes

    @property
    def duration(self) -> int:
        return self.interval.duration

    @property
    def end_minutes(self) -> int:
        return self.interval.end_minutes

    @property
    def is_provisional(self) -> bool:
        return self.id.startswith(PROVISIONAL_PREFIX)

    def slot_key(self) -> Tuple[str, str, DateKey, int, int]:
        start = self.interval.start
        return (self.routine_id, self.room_id, self.date, start.hour, start.minute)

    def moved_to(self, room_id: str, date: DateKey, start_minutes: int) -> "Placement":
        return replace(self, room_id=room_id, interval=Interval(date, start_minutes, self.duration))

    def resized(self, duration: int) -> "Placement":
        return replace(self, interval=Interval(self.date, self.start_minutes, duration))

    def with_id(self, new_id: str) -> "Placement":
        return replace(self, id=new_id)


@dataclass(frozen=True)
class ConflictingPlacement:
    placement_id: str
    routine_title: str
    room_name: str


@dataclass(frozen=True)
class DancerConflict:
    """
    One dancer double-booked by a candidate placement.

    `time_slot` is the candidate's start time, `conflicting_placements` every
    existing placement the dancer is already rehearsing in at that time.
    """

    dancer_id: str
    dancer_name: str
    time_slot: TimePoint
    conflicting_placements: Tuple[ConflictingPlacement, ...]


def new_provisional_id() -> str:
    """
    Return a client-side id for a placement that has not been persisted yet.
    """
    return f"{PROVISIONAL_PREFIX}{time.time_ns()}-{next(_provisional_counter)}"


def validate_duration(duration: object) -> int:
    """
    Reject non-numeric or non-positive durations.
    """
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise MalformedPlacementError(f"Duration must be whole minutes, got {duration!r}")
    if duration <= 0:
        raise MalformedPlacementError(f"Duration must be at least 1 minute, got {duration}")
    return duration


def validate_clock(hour: object, minute: object) -> int:
    """
    Check a wall-clock start (hour 0-23, minute 0-59) and return it as minutes since midnight.
    """
    for name, value, upper in (("hour", hour, 23), ("minute", minute, 59)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedPlacementError(f"Start {name} must be a whole number, got {value!r}")
        if not 0 <= value <= upper:
            raise MalformedPlacementError(f"Start {name} must be between 0 and {upper}, got {value}")
    return hour * 60 + minute  # type: ignore[operator]


def require_id(value: object, what: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise MalformedPlacementError(f"{what} is required")
    return text
