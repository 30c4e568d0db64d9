"""Error hierarchy for scheduling decisions and persistence.

Hard constraint violations block a placement outright. Dancer conflicts are
not errors at all: they surface as a pending confirmation on the session.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base exception for all studioschedule errors."""

    pass


class HardConstraintViolation(SchedulingError):
    """A placement that can never be stored.

    Carries every offending placement so richer callers can list them;
    messages name the first one.
    """

    def __init__(self, message: str, conflicts=()) -> None:
        super().__init__(message)
        self.conflicts = tuple(conflicts)


class RoomConflictError(HardConstraintViolation):
    """The room is already occupied during the requested time."""

    pass


class DuplicateSlotError(HardConstraintViolation):
    """The same routine is already scheduled in this room at this exact start."""

    pass


class MalformedPlacementError(SchedulingError, ValueError):
    """Caller error: bad duration, bad date, missing ids."""

    pass


class UnknownReferenceError(SchedulingError, KeyError):
    """A routine, room or placement id that the session does not know."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class PendingConfirmationError(SchedulingError):
    """Illegal transition of the confirmation state machine.

    Raised when a new attempt starts while one awaits a decision, or when
    confirm/cancel is called with nothing pending.
    """

    pass


class PersistenceError(SchedulingError):
    """A store operation failed (network, server or file error)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StoreConflictError(PersistenceError):
    """The store refused a write because the room slot is taken."""

    pass
