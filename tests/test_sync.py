"""
Tests for the commit cycle.

A file store in a temporary directory plays the backing database, and a
wrapper store fails selected operations to check partial-failure handling.
"""

import tempfile
import unittest
from pathlib import Path

from studioschedule.errors import PersistenceError
from studioschedule.model import DateKey, Genre, Room, Routine, Teacher
from studioschedule.session import ScheduleSession
from studioschedule.storage import FileScheduleStore
from studioschedule.sync import commit_changes, load_session

DAY = DateKey(2024, 6, 1)


def routine(rid: str, dancers: set, duration: int) -> Routine:
    return Routine(
        id=rid,
        title=f"Routine {rid}",
        teacher=Teacher("t1", "Lisa Chen"),
        genre=Genre("g3", "Contemporary"),
        duration=duration,
        dancer_ids=frozenset(dancers),
    )


ROOMS = [Room("R1", "Studio A"), Room("R2", "Studio B")]
ROUTINES = [routine("X", {"A"}, 60), routine("Y", {"A"}, 30), routine("Z", {"B"}, 45)]


class FailingStore:
    """Delegates to a real store but fails the listed operations."""

    def __init__(
        self,
        inner: FileScheduleStore,
        fail_create_at: set = frozenset(),
        fail_delete: set = frozenset(),
        crash_update: bool = False,
    ):
        self.inner = inner
        self.crash_update = crash_update
        self.fail_create_at = fail_create_at
        self.fail_delete = fail_delete

    def load_rooms(self):
        return self.inner.load_rooms()

    def load_routines(self):
        return self.inner.load_routines()

    def load_dancers(self):
        return self.inner.load_dancers()

    def load_placements(self):
        return self.inner.load_placements()

    def create(self, placement):
        if placement.start_minutes in self.fail_create_at:
            raise PersistenceError("network down")
        return self.inner.create(placement)

    def update(self, placement):
        if self.crash_update:
            raise RuntimeError("connection pool exhausted")
        return self.inner.update(placement)

    def delete(self, placement_id):
        if placement_id in self.fail_delete:
            raise PersistenceError("network down", 503)
        return self.inner.delete(placement_id)


class TestCommit(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = FileScheduleStore(Path(self.tmp.name) / "store.json")
        self.store.seed(rooms=ROOMS, routines=ROUTINES)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_load_session_mirrors_store(self) -> None:
        session = load_session(self.store)
        self.assertEqual(set(session.rooms), {"R1", "R2"})
        self.assertEqual(set(session.routines), {"X", "Y", "Z"})
        self.assertFalse(session.is_dirty)

    def test_end_to_end_commit(self) -> None:
        session = load_session(self.store)
        session.propose_new("X", "R1", DAY, 9, 0)
        session.propose_new("Y", "R2", DAY, 9, 15)
        session.confirm()

        report = commit_changes(session, self.store)
        self.assertTrue(report.ok)
        self.assertEqual((len(report.created), len(report.updated), len(report.deleted)), (2, 0, 0))
        self.assertFalse(session.is_dirty)
        self.assertTrue(all(not p.is_provisional for p in session.draft))
        self.assertEqual(len(self.store.load_placements()), 2)

        # moving and removing after the first commit
        moved_id = session.draft[0].id
        session.propose_move(moved_id, "R1", DAY, 11, 0)
        session.remove(session.draft[1].id)
        report = commit_changes(session, self.store)
        self.assertEqual((len(report.created), len(report.updated), len(report.deleted)), (0, 1, 1))
        stored = self.store.load_placements()
        self.assertEqual([(p.id, p.start_minutes) for p in stored], [(moved_id, 660)])
        self.assertFalse(session.is_dirty)

    def test_nothing_to_commit(self) -> None:
        session = load_session(self.store)
        report = commit_changes(session, self.store)
        self.assertEqual(report.applied, 0)
        self.assertTrue(report.ok)

    def test_partial_failure_keeps_unsaved_changes(self) -> None:
        session = load_session(self.store)
        session.propose_new("X", "R1", DAY, 9, 0)
        session.propose_new("Z", "R2", DAY, 13, 0)
        flaky = FailingStore(self.store, fail_create_at={13 * 60})

        report = commit_changes(session, flaky)
        self.assertFalse(report.ok)
        self.assertEqual(len(report.created), 1)
        self.assertEqual(len(report.failures), 1)
        self.assertEqual(report.failures[0].operation, "create")
        self.assertTrue(session.is_dirty)
        self.assertEqual(len(session.saved), 1)
        self.assertEqual(len(session.draft), 2)

        # retry succeeds and only sends the missing create
        report = commit_changes(session, self.store)
        self.assertEqual(len(report.created), 1)
        self.assertFalse(session.is_dirty)
        self.assertEqual(len(self.store.load_placements()), 2)

    def test_unexpected_error_still_folds_other_results(self) -> None:
        session = load_session(self.store)
        session.propose_new("X", "R1", DAY, 9, 0)
        commit_changes(session, self.store)
        moved_id = session.draft[0].id
        session.propose_move(moved_id, "R1", DAY, 11, 0)
        session.propose_new("Z", "R2", DAY, 13, 0)

        report = commit_changes(session, FailingStore(self.store, crash_update=True))
        self.assertEqual(len(report.created), 1)
        self.assertEqual([f.operation for f in report.failures], ["update"])
        self.assertIsInstance(report.failures[0].error, PersistenceError)
        self.assertIsInstance(report.failures[0].error.__cause__, RuntimeError)

        # the create is saved and re-keyed, only the move is still pending
        self.assertIn(report.created[0].id, {p.id for p in session.saved})
        self.assertFalse(any(p.is_provisional for p in session.draft))
        changes = session.pending_diff()
        self.assertEqual((len(changes.to_create), len(changes.to_update)), (0, 1))

        report = commit_changes(session, self.store)
        self.assertTrue(report.ok)
        self.assertEqual(len(self.store.load_placements()), 2)

    def test_failed_delete_stays_pending(self) -> None:
        session = load_session(self.store)
        session.propose_new("X", "R1", DAY, 9, 0)
        commit_changes(session, self.store)
        pid = session.draft[0].id
        session.remove(pid)

        report = commit_changes(session, FailingStore(self.store, fail_delete={pid}))
        self.assertEqual(report.failures[0].error.status, 503)
        self.assertEqual([p.id for p in session.pending_diff().to_delete], [pid])

    def test_store_rejects_room_double_booking(self) -> None:
        # a second session that never saw the first one's rehearsal
        first = load_session(self.store)
        second = load_session(self.store)
        first.propose_new("X", "R1", DAY, 9, 0)
        second.propose_new("Z", "R1", DAY, 9, 30)
        commit_changes(first, self.store)

        report = commit_changes(second, self.store)
        self.assertEqual(len(report.failures), 1)
        self.assertEqual(report.failures[0].error.status, 409)
        self.assertTrue(second.is_dirty)

    def test_session_without_store_catalog(self) -> None:
        session = ScheduleSession(rooms=ROOMS, routines=ROUTINES)
        session.propose_new("Z", "R2", DAY, 10, 0)
        report = commit_changes(session, self.store, max_workers=1)
        self.assertEqual(len(report.created), 1)


if __name__ == "__main__":
    unittest.main()
