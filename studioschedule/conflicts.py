"""
Conflict detection.

Two kinds of conflict exist between placements:
- room conflicts (hard): one room cannot host two rehearsals at once
- dancer conflicts (soft): a dancer cannot be in two rehearsals at once,
  but the user may knowingly schedule anyway

Overlap rule (half-open intervals on the same date):
    start < other_end AND other_start < end
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Optional, TypeVar, Union

from studioschedule.errors import DuplicateSlotError, RoomConflictError
from studioschedule.log import get_logger
from studioschedule.model import (
    ConflictingPlacement,
    Dancer,
    DancerConflict,
    Interval,
    Placement,
    Room,
    Routine,
)
from studioschedule.timeutil import format_time

logger = get_logger(__name__)

T = TypeVar("T")
Lookup = Union[Mapping[str, T], Iterable[T]]

DEFAULT_ROOM_NAME = "Studio"


def _index(items: Optional[Lookup[T]]) -> dict[str, T]:
    if items is None:
        return {}
    if isinstance(items, Mapping):
        return dict(items)
    return {item.id: item for item in items}  # type: ignore[attr-defined]


def room_name(rooms: Optional[Lookup[Room]], room_id: str) -> str:
    room = _index(rooms).get(room_id)
    return room.name if room is not None else DEFAULT_ROOM_NAME


def overlaps(a: Interval, b: Interval) -> bool:
    """
    True iff both intervals are on the same date and share at least one minute.
    Touching endpoints (end == start) do not overlap.
    """
    if a.date != b.date:
        return False
    return a.start_minutes < b.end_minutes and b.start_minutes < a.end_minutes


def _others(existing: Iterable[Placement], candidate: Placement, exclude_id: Optional[str]) -> list[Placement]:
    # a placement never conflicts with itself (moves and resizes keep their id)
    skip = {candidate.id}
    if exclude_id:
        skip.add(exclude_id)
    return [p for p in existing if p.id not in skip]


def find_room_overlaps(
    existing: Iterable[Placement], candidate: Placement, exclude_id: Optional[str] = None
) -> list[Placement]:
    """
    Return every placement in the candidate's room and date that overlaps it.
    """
    return [
        p
        for p in _others(existing, candidate, exclude_id)
        if p.room_id == candidate.room_id and overlaps(p.interval, candidate.interval)
    ]


def find_same_slot_duplicate(
    existing: Iterable[Placement], candidate: Placement, exclude_id: Optional[str] = None
) -> Optional[Placement]:
    """
    Return the placement of the same routine at the exact same room, date and start, if any.
    """
    key = candidate.slot_key()
    for p in _others(existing, candidate, exclude_id):
        if p.slot_key() == key:
            return p
    return None


def check_room_constraint(
    existing: Sequence[Placement],
    candidate: Placement,
    routines: Optional[Lookup[Routine]] = None,
    rooms: Optional[Lookup[Room]] = None,
    exclude_id: Optional[str] = None,
) -> None:
    """
    Raise a HardConstraintViolation if the candidate cannot be placed.

    The identical-slot duplicate is reported first because its message is clearer;
    it is always also a room overlap.
    """
    routine_by_id = _index(routines)
    where = room_name(rooms, candidate.room_id)

    duplicate = find_same_slot_duplicate(existing, candidate, exclude_id)
    if duplicate is not None:
        routine = routine_by_id.get(candidate.routine_id)
        title = routine.title if routine else candidate.routine_id
        start = candidate.interval.start
        raise DuplicateSlotError(
            f'"{title}" is already scheduled at {where} on {candidate.date} {format_time(start.hour, start.minute)}. '
            "Cannot schedule the same routine twice at the same time slot.",
            conflicts=[duplicate],
        )

    hits = find_room_overlaps(existing, candidate, exclude_id)
    if hits:
        first = hits[0]
        routine = routine_by_id.get(first.routine_id)
        title = routine.title if routine else first.routine_id
        start = first.interval.start
        raise RoomConflictError(
            f'{where} already has "{title}" scheduled at {format_time(start.hour, start.minute)}. '
            "Only one routine can be scheduled per studio at a time.",
            conflicts=hits,
        )


def find_dancer_conflicts(
    existing: Iterable[Placement],
    candidate: Placement,
    routines: Lookup[Routine],
    rooms: Optional[Lookup[Room]] = None,
    dancers: Optional[Lookup[Dancer]] = None,
    exclude_id: Optional[str] = None,
) -> list[DancerConflict]:
    """
    Find dancers of the candidate's routine who already rehearse at an overlapping time.

    The room is irrelevant here. One DancerConflict is returned per double-booked
    dancer, listing every placement the dancer is already in. Another placement
    of the same routine counts like any other routine.
    """
    routine_by_id = _index(routines)
    room_by_id = _index(rooms)
    dancer_by_id = _index(dancers)

    routine = routine_by_id.get(candidate.routine_id)
    if routine is None or not routine.dancer_ids:
        return []

    clashes: dict[str, list[ConflictingPlacement]] = {}
    for p in _others(existing, candidate, exclude_id):
        if not overlaps(p.interval, candidate.interval):
            continue
        other = routine_by_id.get(p.routine_id)
        if other is None:
            continue
        shared = routine.dancer_ids & other.dancer_ids
        if not shared:
            continue
        room = room_by_id.get(p.room_id)
        entry = ConflictingPlacement(
            placement_id=p.id,
            routine_title=other.title,
            room_name=room.name if room else DEFAULT_ROOM_NAME,
        )
        for dancer_id in shared:
            clashes.setdefault(dancer_id, []).append(entry)

    def name_of(dancer_id: str) -> str:
        dancer = dancer_by_id.get(dancer_id)
        return dancer.name if dancer else dancer_id

    out = [
        DancerConflict(
            dancer_id=dancer_id,
            dancer_name=name_of(dancer_id),
            time_slot=candidate.interval.start,
            conflicting_placements=tuple(entries),
        )
        for dancer_id, entries in clashes.items()
    ]
    out.sort(key=lambda c: (c.dancer_name.lower(), c.dancer_id))

    if out:
        logger.debug(
            "dancer_conflicts_found",
            candidate=candidate.id,
            routine=candidate.routine_id,
            dancers=[c.dancer_id for c in out],
        )
    return out


def find_schedule_conflicts(
    placements: Sequence[Placement],
    routines: Lookup[Routine],
    rooms: Optional[Lookup[Room]] = None,
    dancers: Optional[Lookup[Dancer]] = None,
) -> list[tuple[Placement, DancerConflict]]:
    """
    List every dancer conflict inside a whole schedule.

    Each conflicting pair (A, B) is reported once, from the later placement's
    point of view, i.e. B is compared against the placements before it.
    """
    routine_by_id = _index(routines)
    room_by_id = _index(rooms)
    dancer_by_id = _index(dancers)

    ordered = sorted(placements, key=lambda p: (p.date, p.start_minutes, p.id))
    out: list[tuple[Placement, DancerConflict]] = []
    # O(n^2) is fine for one studio's schedule
    for i in range(len(ordered)):
        for conflict in find_dancer_conflicts(ordered[:i], ordered[i], routine_by_id, room_by_id, dancer_by_id):
            out.append((ordered[i], conflict))
    return out
