"""
Schedule session and the placement confirmation state machine.

A ScheduleSession owns everything one editing session needs: rooms,
routines, dancers, the saved snapshot (what the store holds) and the draft
snapshot (what the user sees), plus at most one placement waiting for the
user to confirm a dancer conflict.

Every placement attempt (drop, move, resize) follows the same path:

    IDLE -> CHECKING -> COMMITTED             (no conflicts)
                     -> PENDING_CONFIRMATION  (dancer conflicts)
                     -> IDLE + raise          (room conflict, hard)
    PENDING_CONFIRMATION -> COMMITTED | CANCELLED -> IDLE
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from studioschedule.conflicts import check_room_constraint, find_dancer_conflicts, find_schedule_conflicts
from studioschedule.diff import ScheduleDiff, diff_schedules
from studioschedule.errors import (
    HardConstraintViolation,
    PendingConfirmationError,
    UnknownReferenceError,
)
from studioschedule.log import get_logger
from studioschedule.model import (
    DancerConflict,
    Dancer,
    DateKey,
    Interval,
    Placement,
    Room,
    Routine,
    new_provisional_id,
    require_id,
    validate_clock,
    validate_duration,
)

logger = get_logger(__name__)

# a routine scheduled this many times is considered fully booked
SCHEDULED_THRESHOLD = 6

PLACEMENT_REJECTED = "placement-rejected"
CONFLICT_PENDING = "conflict-pending"
PLACEMENT_COMMITTED = "placement-committed"
THRESHOLD_REACHED = "threshold-reached"


class ConflictState(Enum):
    IDLE = "idle"
    CHECKING = "checking"
    PENDING_CONFIRMATION = "pending_confirmation"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ScheduleEvent:
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingPlacement:
    candidate: Placement
    conflicts: tuple[DancerConflict, ...]
    is_new: bool


@dataclass(frozen=True)
class AttemptResult:
    """
    Outcome of one placement attempt: COMMITTED or PENDING_CONFIRMATION.
    Hard constraint failures raise instead.
    """

    outcome: ConflictState
    placement: Placement
    conflicts: tuple[DancerConflict, ...] = ()

    @property
    def committed(self) -> bool:
        return self.outcome is ConflictState.COMMITTED


Listener = Callable[[ScheduleEvent], None]


def _as_date(value: Union[DateKey, str]) -> DateKey:
    return value if isinstance(value, DateKey) else DateKey.parse(value)


class ScheduleSession:
    def __init__(
        self,
        rooms: Iterable[Room] = (),
        routines: Iterable[Routine] = (),
        dancers: Iterable[Dancer] = (),
        saved: Iterable[Placement] = (),
        draft: Optional[Iterable[Placement]] = None,
    ) -> None:
        self.rooms: dict[str, Room] = {r.id: r for r in rooms}
        self.routines: dict[str, Routine] = {r.id: r for r in routines}
        self.dancers: dict[str, Dancer] = {d.id: d for d in dancers}
        self.saved: list[Placement] = list(saved)
        self.draft: list[Placement] = list(self.saved) if draft is None else list(draft)

        self.state = ConflictState.IDLE
        self.pending: Optional[PendingPlacement] = None
        self.last_outcome: Optional[ConflictState] = None
        self._listeners: list[Listener] = []

    # -- events -----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for ScheduleEvents. Returns an unsubscribe function.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, **payload: Any) -> None:
        event = ScheduleEvent(kind, payload)
        for listener in list(self._listeners):
            listener(event)

    # -- lookups ----------------------------------------------------------

    def routine(self, routine_id: str) -> Routine:
        try:
            return self.routines[routine_id]
        except KeyError:
            raise UnknownReferenceError(f"Unknown routine: {routine_id}") from None

    def room(self, room_id: str) -> Room:
        try:
            return self.rooms[room_id]
        except KeyError:
            raise UnknownReferenceError(f"Unknown room: {room_id}") from None

    def placement(self, placement_id: str) -> Placement:
        for p in self.draft:
            if p.id == placement_id:
                return p
        raise UnknownReferenceError(f"Unknown scheduled rehearsal: {placement_id}")

    def placements_on(self, date: Union[DateKey, str], room_id: Optional[str] = None) -> list[Placement]:
        day = _as_date(date)
        out = [p for p in self.draft if p.date == day and (room_id is None or p.room_id == room_id)]
        out.sort(key=lambda p: (p.start_minutes, p.room_id))
        return out

    def occurrences(self, routine_id: str) -> int:
        """
        Number of times a routine appears in the draft, derived on every call.
        """
        return sum(1 for p in self.draft if p.routine_id == routine_id)

    def scheduled_hours(self, routine_id: str) -> float:
        return sum(p.duration for p in self.draft if p.routine_id == routine_id) / 60

    # -- placement attempts -----------------------------------------------

    def propose_new(
        self,
        routine_id: str,
        room_id: str,
        date: Union[DateKey, str],
        hour: int,
        minute: int = 0,
        duration: Optional[int] = None,
    ) -> AttemptResult:
        """
        Drop a routine onto a calendar cell.

        The routine's default duration is used unless `duration` is given.
        """
        routine = self.routine(require_id(routine_id, "routineId"))
        self.room(require_id(room_id, "roomId"))
        start = validate_clock(hour, minute)
        length = validate_duration(routine.duration if duration is None else duration)
        candidate = Placement(
            id=new_provisional_id(),
            routine_id=routine.id,
            room_id=room_id,
            interval=Interval(_as_date(date), start, length),
        )
        return self._attempt(candidate, is_new=True)

    def propose_move(
        self,
        placement_id: str,
        room_id: str,
        date: Union[DateKey, str],
        hour: int,
        minute: int = 0,
    ) -> AttemptResult:
        current = self.placement(placement_id)
        self.room(require_id(room_id, "roomId"))
        start = validate_clock(hour, minute)
        candidate = current.moved_to(room_id, _as_date(date), start)
        return self._attempt(candidate, is_new=False)

    def propose_resize(self, placement_id: str, duration: int) -> AttemptResult:
        current = self.placement(placement_id)
        candidate = current.resized(validate_duration(duration))
        return self._attempt(candidate, is_new=False)

    def _attempt(self, candidate: Placement, is_new: bool) -> AttemptResult:
        if self.pending is not None:
            raise PendingConfirmationError("Another placement is waiting for confirmation")

        self.state = ConflictState.CHECKING
        try:
            check_room_constraint(self.draft, candidate, self.routines, self.rooms)
        except HardConstraintViolation as exc:
            self.state = ConflictState.IDLE
            logger.info(
                "placement_rejected",
                placement=candidate.id,
                routine=candidate.routine_id,
                room=candidate.room_id,
                date=str(candidate.date),
                reason=str(exc),
            )
            self._emit(PLACEMENT_REJECTED, reason=str(exc), placement=candidate, conflicts=exc.conflicts)
            raise

        conflicts = tuple(find_dancer_conflicts(self.draft, candidate, self.routines, self.rooms, self.dancers))
        if conflicts:
            self.pending = PendingPlacement(candidate=candidate, conflicts=conflicts, is_new=is_new)
            self.state = ConflictState.PENDING_CONFIRMATION
            logger.info(
                "placement_pending",
                placement=candidate.id,
                routine=candidate.routine_id,
                dancers=[c.dancer_id for c in conflicts],
            )
            self._emit(CONFLICT_PENDING, placement=candidate, conflicts=conflicts)
            return AttemptResult(ConflictState.PENDING_CONFIRMATION, candidate, conflicts)

        self._commit(candidate, is_new)
        return AttemptResult(ConflictState.COMMITTED, candidate)

    def confirm(self) -> Placement:
        """
        Schedule the pending placement anyway.
        """
        if self.pending is None:
            raise PendingConfirmationError("Nothing is waiting for confirmation")
        pending = self.pending
        self.pending = None
        self._commit(pending.candidate, pending.is_new)
        return pending.candidate

    def cancel(self) -> Placement:
        """
        Discard the pending placement; the draft is left untouched.
        """
        if self.pending is None:
            raise PendingConfirmationError("Nothing is waiting for confirmation")
        candidate = self.pending.candidate
        self.pending = None
        self.state = ConflictState.CANCELLED
        self.last_outcome = ConflictState.CANCELLED
        logger.info("placement_cancelled", placement=candidate.id)
        self.state = ConflictState.IDLE
        return candidate

    def _commit(self, candidate: Placement, is_new: bool) -> None:
        for i, p in enumerate(self.draft):
            if p.id == candidate.id:
                self.draft[i] = candidate
                break
        else:
            self.draft.append(candidate)

        self.state = ConflictState.COMMITTED
        self.last_outcome = ConflictState.COMMITTED
        logger.info(
            "placement_committed",
            placement=candidate.id,
            routine=candidate.routine_id,
            room=candidate.room_id,
            date=str(candidate.date),
            start=candidate.start_minutes,
            duration=candidate.duration,
        )
        self._emit(PLACEMENT_COMMITTED, placement=candidate, is_new=is_new)

        if is_new and self.occurrences(candidate.routine_id) == SCHEDULED_THRESHOLD:
            self._emit(THRESHOLD_REACHED, routine_id=candidate.routine_id, count=SCHEDULED_THRESHOLD)
        self.state = ConflictState.IDLE

    # -- catalog ----------------------------------------------------------

    def _require_idle(self) -> None:
        if self.pending is not None:
            raise PendingConfirmationError("Resolve the pending placement first")

    def add_room(self, room: Room) -> Room:
        """
        Add a room, or replace the one with the same id.
        """
        self._require_idle()
        require_id(room.id, "room id")
        self.rooms[room.id] = room
        logger.info("room_saved", room=room.id)
        return room

    def add_dancer(self, dancer: Dancer) -> Dancer:
        self._require_idle()
        require_id(dancer.id, "dancer id")
        self.dancers[dancer.id] = dancer
        logger.info("dancer_saved", dancer=dancer.id)
        return dancer

    def add_routine(self, routine: Routine) -> Routine:
        """
        Add a routine, or replace the one with the same id.

        Every dancer must already be in the catalog. Placed rehearsals keep
        their own duration; only new drops use the routine's default.
        """
        self._require_idle()
        require_id(routine.id, "routine id")
        validate_duration(routine.duration)
        unknown = sorted(d for d in routine.dancer_ids if d not in self.dancers)
        if unknown:
            raise UnknownReferenceError(f"Unknown dancer: {', '.join(unknown)}")
        self.routines[routine.id] = routine
        logger.info("routine_saved", routine=routine.id, dancers=len(routine.dancer_ids))
        return routine

    # -- other draft edits ------------------------------------------------

    def remove(self, placement_id: str) -> Placement:
        """
        Remove a placement from the draft. The store is only touched on commit.
        """
        self._require_idle()
        target = self.placement(placement_id)
        self.draft = [p for p in self.draft if p.id != placement_id]
        logger.info("placement_removed", placement=placement_id)
        return target

    def remove_routine(self, routine_id: str) -> list[Placement]:
        """
        Forget a routine and drop all of its placements from the draft.
        """
        self._require_idle()
        self.routine(routine_id)
        del self.routines[routine_id]
        removed = [p for p in self.draft if p.routine_id == routine_id]
        self.draft = [p for p in self.draft if p.routine_id != routine_id]
        return removed

    # -- comparison with the store ----------------------------------------

    def pending_diff(self) -> ScheduleDiff:
        return diff_schedules(self.saved, self.draft)

    @property
    def is_dirty(self) -> bool:
        return not self.pending_diff().is_empty

    def mark_saved(self, saved: Sequence[Placement], draft: Sequence[Placement]) -> None:
        self.saved = list(saved)
        self.draft = list(draft)

    def conflict_overview(self) -> list[tuple[Placement, DancerConflict]]:
        return find_schedule_conflicts(self.draft, self.routines, self.rooms, self.dancers)
