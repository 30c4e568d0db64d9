"""
Commit cycle between a ScheduleSession and a schedule store.

One commit derives the create/update/delete operations from the differ,
sends all of them to the store at once, waits for every one to finish and
then folds only the confirmed operations into the saved snapshot. Failed
operations stay in the draft, so the session keeps reporting unsaved
changes until a later commit succeeds.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Protocol

from studioschedule.diff import CREATE, DELETE, UPDATE, rekey_draft
from studioschedule.errors import PersistenceError
from studioschedule.log import get_logger
from studioschedule.model import Dancer, Placement, Room, Routine
from studioschedule.session import ScheduleSession

logger = get_logger(__name__)


class ScheduleStore(Protocol):
    """What the commit cycle needs from a backing store."""

    def load_rooms(self) -> list[Room]: ...

    def load_routines(self) -> list[Routine]: ...

    def load_dancers(self) -> list[Dancer]: ...

    def load_placements(self) -> list[Placement]: ...

    def create(self, placement: Placement) -> Placement: ...

    def update(self, placement: Placement) -> Placement: ...

    def delete(self, placement_id: str) -> None: ...


@dataclass(frozen=True)
class OperationFailure:
    operation: str
    placement: Placement
    error: PersistenceError

    def __str__(self) -> str:
        return f"{self.operation} {self.placement.id}: {self.error}"


@dataclass
class CommitReport:
    created: list[Placement] = field(default_factory=list)
    updated: list[Placement] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failures: list[OperationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def applied(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


def load_session(store: ScheduleStore) -> ScheduleSession:
    """
    Build a fresh session whose saved and draft snapshots both mirror the store.
    """
    placements = store.load_placements()
    session = ScheduleSession(
        rooms=store.load_rooms(),
        routines=store.load_routines(),
        dancers=store.load_dancers(),
        saved=placements,
    )
    logger.info("session_loaded", rooms=len(session.rooms), routines=len(session.routines), placements=len(placements))
    return session


def _call(store: ScheduleStore, operation: str, placement: Placement) -> Optional[Placement]:
    if operation == CREATE:
        return store.create(placement)
    if operation == UPDATE:
        return store.update(placement)
    store.delete(placement.id)
    return None


def commit_changes(session: ScheduleSession, store: ScheduleStore, max_workers: int = 8) -> CommitReport:
    """
    Push the session's draft to the store and re-derive the saved snapshot.
    """
    report = CommitReport()
    changes = session.pending_diff()
    if changes.is_empty:
        return report

    jobs: list[tuple[str, Placement]] = (
        [(CREATE, p) for p in changes.to_create]
        + [(UPDATE, p) for p in changes.to_update]
        + [(DELETE, p) for p in changes.to_delete]
    )
    logger.info(
        "commit_started",
        creates=len(changes.to_create),
        updates=len(changes.to_update),
        deletes=len(changes.to_delete),
    )

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as pool:
        futures: list[Future] = [pool.submit(_call, store, op, p) for op, p in jobs]

    # the pool has joined; results are read in job order for a stable report
    for (op, placement), fut in zip(jobs, futures):
        try:
            result = fut.result()
        except PersistenceError as exc:
            logger.warning("commit_operation_failed", operation=op, placement=placement.id, error=str(exc))
            report.failures.append(OperationFailure(op, placement, exc))
            continue
        except Exception as exc:
            logger.error("commit_operation_crashed", operation=op, placement=placement.id, error=repr(exc))
            error = PersistenceError(f"{op} failed: {exc!r}")
            error.__cause__ = exc
            report.failures.append(OperationFailure(op, placement, error))
            continue
        if op == CREATE and result is not None:
            report.created.append(result)
        elif op == UPDATE and result is not None:
            report.updated.append(result)
        elif op == DELETE:
            report.deleted.append(placement.id)

    deleted = set(report.deleted)
    updated_by_id = {p.id: p for p in report.updated}
    saved = [updated_by_id.get(p.id, p) for p in session.saved if p.id not in deleted]
    saved.extend(report.created)

    draft = rekey_draft(session.draft, report.created, report.updated)
    session.mark_saved(saved, draft)

    logger.info("commit_finished", applied=report.applied, failed=len(report.failures), dirty=session.is_dirty)
    return report
