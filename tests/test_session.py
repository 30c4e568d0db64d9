"""
Tests for the placement confirmation state machine.

Contract:
- room conflicts reject immediately and never create a pending placement
- dancer conflicts leave the draft untouched until confirm()
- cancel() discards the candidate
"""

import unittest

from studioschedule.errors import (
    MalformedPlacementError,
    PendingConfirmationError,
    RoomConflictError,
    UnknownReferenceError,
)
from studioschedule.model import Dancer, DateKey, Genre, Interval, Placement, Room, Routine, Teacher
from studioschedule.session import (
    CONFLICT_PENDING,
    PLACEMENT_COMMITTED,
    PLACEMENT_REJECTED,
    SCHEDULED_THRESHOLD,
    THRESHOLD_REACHED,
    ConflictState,
    ScheduleSession,
)

DAY = DateKey(2024, 6, 1)


def routine(rid: str, dancers: set, duration: int = 60) -> Routine:
    return Routine(
        id=rid,
        title=f"Routine {rid}",
        teacher=Teacher("t1", "David Park"),
        genre=Genre("g2", "Hip Hop"),
        duration=duration,
        dancer_ids=frozenset(dancers),
    )


def make_session(saved=()) -> ScheduleSession:
    return ScheduleSession(
        rooms=[Room("R1", "Studio A"), Room("R2", "Studio B"), Room("R3", "Old Hall", is_active=False)],
        routines=[routine("R1", {"A"}, 60), routine("R2", {"A"}, 30), routine("R9", {"Z"}, 15)],
        dancers=[Dancer("A", "Ana")],
        saved=saved,
    )


class TestSessionAttempts(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.events = []
        self.session.subscribe(self.events.append)

    def kinds(self) -> list:
        return [e.kind for e in self.events]

    def test_free_slot_commits_immediately(self) -> None:
        result = self.session.propose_new("R1", "R1", DAY, 9, 0)
        self.assertTrue(result.committed)
        self.assertEqual(len(self.session.draft), 1)
        self.assertEqual(self.session.draft[0].duration, 60)
        self.assertTrue(self.session.draft[0].is_provisional)
        self.assertIs(self.session.state, ConflictState.IDLE)
        self.assertIs(self.session.last_outcome, ConflictState.COMMITTED)
        self.assertEqual(self.kinds(), [PLACEMENT_COMMITTED])

    def test_room_conflict_rejects_without_pending(self) -> None:
        self.session.propose_new("R1", "R1", DAY, 9, 0)
        with self.assertRaises(RoomConflictError):
            self.session.propose_new("R9", "R1", "2024-06-01", 9, 30)
        self.assertIsNone(self.session.pending)
        self.assertIs(self.session.state, ConflictState.IDLE)
        self.assertEqual(len(self.session.draft), 1)
        self.assertEqual(self.kinds(), [PLACEMENT_COMMITTED, PLACEMENT_REJECTED])
        self.assertIn("Studio A", self.events[-1].payload["reason"])

    def test_dancer_conflict_waits_for_confirmation(self) -> None:
        self.session.propose_new("R1", "R1", DAY, 9, 0)
        result = self.session.propose_new("R2", "R2", DAY, 9, 15)
        self.assertIs(result.outcome, ConflictState.PENDING_CONFIRMATION)
        self.assertIs(self.session.state, ConflictState.PENDING_CONFIRMATION)
        self.assertEqual(len(self.session.draft), 1)
        self.assertEqual([c.dancer_name for c in result.conflicts], ["Ana"])
        self.assertEqual(self.kinds()[-1], CONFLICT_PENDING)

        self.session.confirm()
        self.assertEqual(len(self.session.draft), 2)
        self.assertIsNone(self.session.pending)
        self.assertIs(self.session.state, ConflictState.IDLE)
        self.assertIs(self.session.last_outcome, ConflictState.COMMITTED)

    def test_cancel_leaves_draft_untouched(self) -> None:
        self.session.propose_new("R1", "R1", DAY, 9, 0)
        before = list(self.session.draft)
        self.session.propose_new("R2", "R2", DAY, 9, 15)
        self.session.cancel()
        self.assertEqual(self.session.draft, before)
        self.assertIsNone(self.session.pending)
        self.assertIs(self.session.last_outcome, ConflictState.CANCELLED)
        self.assertIs(self.session.state, ConflictState.IDLE)

    def test_no_new_attempt_while_pending(self) -> None:
        self.session.propose_new("R1", "R1", DAY, 9, 0)
        self.session.propose_new("R2", "R2", DAY, 9, 15)
        with self.assertRaises(PendingConfirmationError):
            self.session.propose_new("R9", "R2", DAY, 14, 0)
        with self.assertRaises(PendingConfirmationError):
            self.session.remove(self.session.draft[0].id)

    def test_confirm_without_pending(self) -> None:
        with self.assertRaises(PendingConfirmationError):
            self.session.confirm()
        with self.assertRaises(PendingConfirmationError):
            self.session.cancel()

    def test_malformed_input_rejected_before_checks(self) -> None:
        with self.assertRaises(MalformedPlacementError):
            self.session.propose_new("R1", "R1", DAY, 9, 0, duration=0)
        with self.assertRaises(MalformedPlacementError):
            self.session.propose_new("", "R1", DAY, 9, 0)
        with self.assertRaises(UnknownReferenceError):
            self.session.propose_new("nope", "R1", DAY, 9, 0)
        with self.assertRaises(UnknownReferenceError):
            self.session.propose_new("R1", "nope", DAY, 9, 0)
        self.assertEqual(self.events, [])

    def test_out_of_range_start_is_rejected(self) -> None:
        # neither normalized into another slot nor left to fail in the arithmetic
        for hour, minute in ((-1, 90), (9, 75), ("9", 0)):
            with self.assertRaises(MalformedPlacementError):
                self.session.propose_new("R1", "R1", DAY, hour, minute)
        self.assertEqual(self.session.draft, [])
        self.assertEqual(self.events, [])

    def test_inactive_room_can_still_be_used(self) -> None:
        self.assertTrue(self.session.propose_new("R1", "R3", DAY, 9, 0).committed)


class TestMovesAndResizes(unittest.TestCase):
    def setUp(self) -> None:
        saved = [
            Placement("s1", "R1", "R1", Interval(DAY, 540, 60)),  # 9:00-10:00 dancer A
            Placement("s2", "R9", "R1", Interval(DAY, 600, 15)),  # 10:00-10:15
            Placement("s3", "R2", "R2", Interval(DAY, 660, 30)),  # 11:00-11:30 dancer A
        ]
        self.session = make_session(saved)

    def test_move_replaces_in_place(self) -> None:
        result = self.session.propose_move("s2", "R2", DAY, 13, 0)
        self.assertTrue(result.committed)
        self.assertEqual(len(self.session.draft), 3)
        moved = self.session.placement("s2")
        self.assertEqual((moved.room_id, moved.start_minutes, moved.duration), ("R2", 780, 15))

    def test_move_small_shift_does_not_hit_itself(self) -> None:
        self.assertTrue(self.session.propose_move("s1", "R1", DAY, 8, 45).committed)

    def test_resize_into_neighbour_is_rejected(self) -> None:
        with self.assertRaises(RoomConflictError):
            self.session.propose_resize("s1", 90)
        self.assertEqual(self.session.placement("s1").duration, 60)

    def test_move_with_dancer_conflict_then_confirm_replaces(self) -> None:
        # s1 moves to overlap s3, which dancer A rehearses in another room
        self.session.propose_move("s1", "R3", DAY, 10, 30)
        self.assertIs(self.session.state, ConflictState.PENDING_CONFIRMATION)
        self.assertEqual(self.session.placement("s1").room_id, "R1")
        self.session.confirm()
        self.assertEqual(len(self.session.draft), 3)
        self.assertEqual(self.session.placement("s1").room_id, "R3")

    def test_move_to_invalid_clock_keeps_placement(self) -> None:
        for hour, minute in ((25, 0), (10, 60), (10, "30")):
            with self.assertRaises(MalformedPlacementError):
                self.session.propose_move("s2", "R1", DAY, hour, minute)
        self.assertEqual(self.session.placement("s2").start_minutes, 600)

    def test_moves_do_not_count_towards_threshold(self) -> None:
        events = []
        self.session.subscribe(events.append)
        self.session.propose_move("s2", "R2", DAY, 13, 0)
        self.assertNotIn(THRESHOLD_REACHED, [e.kind for e in events])

    def test_dirty_tracking(self) -> None:
        self.assertFalse(self.session.is_dirty)
        self.session.propose_resize("s2", 20)
        self.assertTrue(self.session.is_dirty)
        self.session.propose_resize("s2", 15)
        self.assertFalse(self.session.is_dirty)

    def test_remove_and_remove_routine(self) -> None:
        self.session.remove("s2")
        self.assertEqual([p.id for p in self.session.draft], ["s1", "s3"])
        removed = self.session.remove_routine("R2")
        self.assertEqual([p.id for p in removed], ["s3"])
        self.assertNotIn("R2", self.session.routines)
        self.assertEqual(len(self.session.pending_diff().to_delete), 2)


class TestThreshold(unittest.TestCase):
    def test_notification_once_at_sixth_occurrence(self) -> None:
        session = make_session()
        events = []
        session.subscribe(events.append)
        for i in range(SCHEDULED_THRESHOLD + 1):
            session.propose_new("R9", "R1", DAY, 8 + i, 0)
        reached = [e for e in events if e.kind == THRESHOLD_REACHED]
        self.assertEqual(len(reached), 1)
        self.assertEqual(reached[0].payload["routine_id"], "R9")
        self.assertEqual(session.occurrences("R9"), SCHEDULED_THRESHOLD + 1)
        self.assertAlmostEqual(session.scheduled_hours("R9"), 1.75)

    def test_count_is_derived_from_draft(self) -> None:
        session = make_session()
        events = []
        session.subscribe(events.append)
        for i in range(SCHEDULED_THRESHOLD):
            session.propose_new("R9", "R1", DAY, 8 + i, 0)
        session.remove(session.draft[0].id)
        session.propose_new("R9", "R1", DAY, 20, 0)
        reached = [e for e in events if e.kind == THRESHOLD_REACHED]
        # the count dropped to 5 and climbed back to 6
        self.assertEqual(len(reached), 2)


class TestCatalog(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()

    def test_added_routine_can_be_scheduled(self) -> None:
        self.session.add_room(Room("R4", "Studio D"))
        self.session.add_dancer(Dancer("B", "Bea"))
        self.session.add_routine(routine("R5", {"A", "B"}, 45))
        result = self.session.propose_new("R5", "R4", DAY, 18, 0)
        self.assertTrue(result.committed)
        self.assertEqual(result.placement.duration, 45)

    def test_routine_with_unknown_dancer_is_refused(self) -> None:
        with self.assertRaises(UnknownReferenceError):
            self.session.add_routine(routine("R5", {"A", "ghost"}))
        self.assertNotIn("R5", self.session.routines)

    def test_routine_needs_positive_duration(self) -> None:
        with self.assertRaises(MalformedPlacementError):
            self.session.add_routine(routine("R5", {"A"}, 0))

    def test_replacing_routine_keeps_placed_durations(self) -> None:
        self.session.propose_new("R9", "R1", DAY, 9, 0)
        self.session.add_dancer(Dancer("Z", "Zed"))
        self.session.add_routine(routine("R9", {"Z"}, 90))
        self.assertEqual(self.session.draft[0].duration, 15)
        self.assertEqual(self.session.routine("R9").duration, 90)

    def test_catalog_edits_blocked_while_pending(self) -> None:
        self.session.propose_new("R1", "R1", DAY, 9, 0)
        self.session.propose_new("R2", "R2", DAY, 9, 15)
        with self.assertRaises(PendingConfirmationError):
            self.session.add_room(Room("R4", "Studio D"))


class TestEndToEnd(unittest.TestCase):
    def test_drop_confirm_and_diff(self) -> None:
        session = make_session()
        first = session.propose_new("R1", "R1", DAY, 9, 0)
        self.assertTrue(first.committed)
        second = session.propose_new("R2", "R2", DAY, 9, 15)
        self.assertIs(second.outcome, ConflictState.PENDING_CONFIRMATION)
        self.assertEqual(second.conflicts[0].dancer_id, "A")
        session.confirm()
        self.assertEqual(len(session.draft), 2)
        changes = session.pending_diff()
        self.assertEqual(
            (len(changes.to_create), len(changes.to_update), len(changes.to_delete)),
            (2, 0, 0),
        )


if __name__ == "__main__":
    unittest.main()
