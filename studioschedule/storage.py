"""
Persistent local state.

Two JSON files are managed here:

    data/workspace.json   the editing session: catalog + saved and draft snapshots
    data/store.json       a file-backed schedule store for offline use

The workspace keeps unsaved edits between CLI invocations. The file store
plays the role of the web app's database: it assigns ids and refuses room
double-bookings at its boundary with the same overlap rule as the session.
"""

from __future__ import annotations

import json
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from studioschedule.config import default_workspace_path
from studioschedule.conflicts import find_room_overlaps
from studioschedule.errors import MalformedPlacementError, PersistenceError, StoreConflictError
from studioschedule.log import get_logger
from studioschedule.model import Dancer, Placement, Room, Routine
from studioschedule.parse import (
    dancer_to_dict,
    parse_dancer,
    parse_placement,
    parse_room,
    parse_routine,
    placement_to_dict,
    room_to_dict,
    routine_to_dict,
)
from studioschedule.session import ScheduleSession

logger = get_logger(__name__)

T = TypeVar("T")


def _read_json(path: Path) -> dict[str, Any]:
    """
    Read a JSON object. Missing, unreadable or non-object files read as {}.
    """
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("json_unreadable", path=str(path), error=str(exc))
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _parse_all(records: Any, parser: Callable[[dict[str, Any]], T], what: str) -> list[T]:
    """
    Parse a list of records, skipping the ones that are not valid.
    """
    if not isinstance(records, list):
        return []
    out: list[T] = []
    for rec in records:
        if not isinstance(rec, dict):
            continue
        try:
            out.append(parser(rec))
        except MalformedPlacementError as exc:
            logger.warning("record_skipped", kind=what, id=rec.get("id"), error=str(exc))
    return out


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


def load_workspace(path: str | Path | None = None) -> ScheduleSession:
    """
    Load the editing session. An empty session is returned if the file is missing or invalid.
    """
    ws_path = Path(path) if path is not None else default_workspace_path()
    data = _read_json(ws_path)

    saved = _parse_all(data.get("saved"), parse_placement, "placement")
    draft_raw = data.get("draft")
    draft = _parse_all(draft_raw, parse_placement, "placement") if isinstance(draft_raw, list) else None

    return ScheduleSession(
        rooms=_parse_all(data.get("rooms"), parse_room, "room"),
        routines=_parse_all(data.get("routines"), parse_routine, "routine"),
        dancers=_parse_all(data.get("dancers"), parse_dancer, "dancer"),
        saved=saved,
        draft=draft,
    )


def save_workspace(session: ScheduleSession, path: str | Path | None = None) -> None:
    """
    Save the editing session, including the unsaved draft.
    """
    ws_path = Path(path) if path is not None else default_workspace_path()
    payload = {
        "rooms": [room_to_dict(r) for r in session.rooms.values()],
        "routines": [routine_to_dict(r) for r in session.routines.values()],
        "dancers": [dancer_to_dict(d) for d in session.dancers.values()],
        "saved": [placement_to_dict(p) for p in session.saved],
        "draft": [placement_to_dict(p) for p in session.draft],
    }
    _write_json(ws_path, payload)


# ---------------------------------------------------------------------------
# File-backed store
# ---------------------------------------------------------------------------


class FileScheduleStore:
    """
    Schedule store kept in one JSON file.

    Writes are serialized with a lock because the commit cycle issues them
    from several threads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _data(self) -> dict[str, Any]:
        return _read_json(self.path)

    def load_rooms(self) -> list[Room]:
        return _parse_all(self._data().get("rooms"), parse_room, "room")

    def load_routines(self) -> list[Routine]:
        return _parse_all(self._data().get("routines"), parse_routine, "routine")

    def load_dancers(self) -> list[Dancer]:
        return _parse_all(self._data().get("dancers"), parse_dancer, "dancer")

    def load_placements(self) -> list[Placement]:
        out = _parse_all(self._data().get("scheduled"), parse_placement, "placement")
        out.sort(key=lambda p: (p.date, p.start_minutes))
        return out

    def seed(self, rooms: Iterable[Room] = (), routines: Iterable[Routine] = (), dancers: Iterable[Dancer] = ()) -> None:
        """
        Replace the catalog (rooms, routines, dancers), keeping scheduled rehearsals.
        """
        with self._lock:
            data = self._data()
            data["rooms"] = [room_to_dict(r) for r in rooms]
            data["routines"] = [routine_to_dict(r) for r in routines]
            data["dancers"] = [dancer_to_dict(d) for d in dancers]
            data.setdefault("scheduled", [])
            _write_json(self.path, data)

    def _check_slot(self, existing: list[Placement], candidate: Placement) -> None:
        hits = find_room_overlaps(existing, candidate)
        if hits:
            logger.warning("store_conflict", room=candidate.room_id, date=str(candidate.date), taken_by=hits[0].id)
            raise StoreConflictError("Time slot already occupied for this room and date.", 409)

    def _write(self, placements: list[Placement], data: dict[str, Any]) -> None:
        data["scheduled"] = [placement_to_dict(p) for p in placements]
        try:
            _write_json(self.path, data)
        except OSError as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc

    def create(self, placement: Placement) -> Placement:
        with self._lock:
            data = self._data()
            existing = _parse_all(data.get("scheduled"), parse_placement, "placement")
            self._check_slot(existing, placement)
            created = placement.with_id(uuid.uuid4().hex)
            existing.append(created)
            self._write(existing, data)
            return created

    def update(self, placement: Placement) -> Placement:
        with self._lock:
            data = self._data()
            existing = _parse_all(data.get("scheduled"), parse_placement, "placement")
            if not any(p.id == placement.id for p in existing):
                raise PersistenceError("Scheduled routine not found", 404)
            self._check_slot(existing, placement)
            self._write([placement if p.id == placement.id else p for p in existing], data)
            return placement

    def delete(self, placement_id: str) -> None:
        with self._lock:
            data = self._data()
            existing = _parse_all(data.get("scheduled"), parse_placement, "placement")
            remaining = [p for p in existing if p.id != placement_id]
            if len(remaining) == len(existing):
                raise PersistenceError("Scheduled routine not found", 404)
            self._write(remaining, data)
