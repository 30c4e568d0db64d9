"""
studioschedule: rehearsal scheduling for a dance studio.

Checks proposed placements of routines into rooms for room double-booking
and dancer conflicts, and syncs the edited draft schedule with a store.
"""

from studioschedule.conflicts import find_dancer_conflicts, find_room_overlaps, overlaps
from studioschedule.diff import ScheduleDiff, diff_schedules, rekey_draft
from studioschedule.session import ConflictState, ScheduleSession

__all__ = [
    "ConflictState",
    "ScheduleDiff",
    "ScheduleSession",
    "diff_schedules",
    "find_dancer_conflicts",
    "find_room_overlaps",
    "overlaps",
    "rekey_draft",
]
