"""
Draft / saved schedule differ.

The draft holds every edit made since the last commit; the saved snapshot
mirrors the store. diff_schedules() derives the create/update/delete
operations that bring the store in line with the draft, and rekey_draft()
swaps provisional ids for the ids the store assigned afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from studioschedule.model import Placement

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
UNCHANGED = "unchanged"


@dataclass
class ScheduleDiff:
    to_create: list[Placement] = field(default_factory=list)
    to_update: list[Placement] = field(default_factory=list)
    to_delete: list[Placement] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)

    def __len__(self) -> int:
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)


def placement_changed(saved: Placement, current: Placement) -> bool:
    """
    True if the room, date, start or duration of a placement was edited.
    """
    return (
        saved.room_id != current.room_id
        or saved.date != current.date
        or saved.start_minutes != current.start_minutes
        or saved.duration != current.duration
    )


def diff_schedules(saved: Sequence[Placement], draft: Sequence[Placement]) -> ScheduleDiff:
    """
    Compute the operations needed to turn `saved` into `draft`, matching by id.

    Output lists keep the order of the snapshot they come from.
    """
    saved_by_id = {p.id: p for p in saved}
    draft_ids = {p.id for p in draft}

    result = ScheduleDiff()
    for p in draft:
        before = saved_by_id.get(p.id)
        if before is None:
            result.to_create.append(p)
        elif placement_changed(before, p):
            result.to_update.append(p)
    for p in saved:
        if p.id not in draft_ids:
            result.to_delete.append(p)
    return result


def classify_ids(saved: Sequence[Placement], draft: Sequence[Placement]) -> dict[str, str]:
    """
    Map every id in saved and draft to exactly one of create/update/delete/unchanged.
    """
    d = diff_schedules(saved, draft)
    out: dict[str, str] = {}
    for p in saved:
        out[p.id] = UNCHANGED
    for p in draft:
        out[p.id] = UNCHANGED
    for p in d.to_create:
        out[p.id] = CREATE
    for p in d.to_update:
        out[p.id] = UPDATE
    for p in d.to_delete:
        out[p.id] = DELETE
    return out


def rekey_draft(
    draft: Sequence[Placement],
    created: Iterable[Placement],
    updated: Optional[Iterable[Placement]] = None,
) -> list[Placement]:
    """
    Replace provisional draft entries with the records the store created for them.

    A created record is matched to its provisional entry by
    (routine, room, date, start hour, start minute), never by id: the
    provisional id is discarded by the store. Each created record is used
    at most once. Updated records replace draft entries with the same id.
    """
    pending = list(created)
    updated_by_id = {p.id: p for p in (updated or [])}

    out: list[Placement] = []
    for p in draft:
        if p.is_provisional:
            key = p.slot_key()
            match = next((c for c in pending if c.slot_key() == key), None)
            if match is not None:
                pending.remove(match)
                out.append(match)
                continue
        out.append(updated_by_id.get(p.id, p))
    return out
