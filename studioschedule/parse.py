"""
Record parsing.

Converts the JSON records used by the studio web app (camelCase keys, as
returned by /api/routines, /api/rooms and /api/scheduled) into model
objects and back. The local workspace file uses the same record shapes,
so one set of converters serves both.

Placements from the API carry `startMinutes` and an ISO timestamp date
(`2024-06-01T00:00:00.000Z`); older records may carry `startTime:
{hour, minute}` and a plain `YYYY-MM-DD` date. Both are accepted.
"""

from __future__ import annotations

from typing import Any, Optional

from studioschedule.errors import MalformedPlacementError
from studioschedule.model import (
    Dancer,
    DateKey,
    Genre,
    Interval,
    Level,
    Placement,
    Room,
    Routine,
    Teacher,
    require_id,
    validate_clock,
)


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise MalformedPlacementError(f"{what} must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise MalformedPlacementError(f"{what} must be a number, got {value!r}")


def _ref_id(record: dict[str, Any], key: str, nested: str) -> Any:
    # accept {"roomId": "r1"} as well as {"room": {"id": "r1"}}
    if record.get(key):
        return record[key]
    inner = record.get(nested)
    if isinstance(inner, dict):
        return inner.get("id")
    return None


def parse_room(record: dict[str, Any]) -> Room:
    return Room(
        id=require_id(record.get("id"), "room id"),
        name=str(record.get("name") or "").strip(),
        is_active=bool(record.get("isActive", True)),
    )


def parse_dancer(record: dict[str, Any]) -> Dancer:
    classes = record.get("classes") or []
    if not isinstance(classes, list):
        classes = [classes]
    return Dancer(
        id=require_id(record.get("id"), "dancer id"),
        name=str(record.get("name") or "").strip(),
        classes=[str(c) for c in classes if str(c).strip()],
    )


def _parse_named(record: Any) -> tuple[str, str]:
    if not isinstance(record, dict):
        return "", ""
    return str(record.get("id") or ""), str(record.get("name") or "")


def parse_routine(record: dict[str, Any]) -> Routine:
    teacher_id, teacher_name = _parse_named(record.get("teacher"))
    genre_id, genre_name = _parse_named(record.get("genre"))

    level: Optional[Level] = None
    raw_level = record.get("level")
    if isinstance(raw_level, dict) and raw_level.get("id"):
        level = Level(
            id=str(raw_level["id"]),
            name=str(raw_level.get("name") or ""),
            color=str(raw_level.get("color") or ""),
        )

    dancer_ids: set[str] = set()
    for d in record.get("dancers") or []:
        if isinstance(d, dict) and d.get("id"):
            dancer_ids.add(str(d["id"]))
        elif isinstance(d, str) and d:
            dancer_ids.add(d)
    for d in record.get("dancerIds") or []:
        if d:
            dancer_ids.add(str(d))

    teacher_email = record.get("teacher", {}).get("email") if isinstance(record.get("teacher"), dict) else None

    return Routine(
        id=require_id(record.get("id"), "routine id"),
        title=str(record.get("songTitle") or record.get("title") or "").strip(),
        teacher=Teacher(id=teacher_id, name=teacher_name, email=teacher_email),
        genre=Genre(id=genre_id, name=genre_name),
        duration=_as_int(record.get("duration", 60), "duration"),
        dancer_ids=frozenset(dancer_ids),
        level=level,
        color=str(record.get("color") or (level.color if level else "") or "#9CA3AF"),
        is_inactive=bool(record.get("isInactive", False)),
        notes=record.get("notes") or None,
    )


def parse_placement(record: dict[str, Any]) -> Placement:
    """
    Parse one scheduled rehearsal record. Raises MalformedPlacementError.
    """
    if "startMinutes" in record:
        start = _as_int(record["startMinutes"], "startMinutes")
    elif isinstance(record.get("startTime"), dict):
        st = record["startTime"]
        start = validate_clock(_as_int(st.get("hour"), "hour"), _as_int(st.get("minute", 0), "minute"))
    else:
        raise MalformedPlacementError("startMinutes is required")

    if record.get("duration") is None:
        raise MalformedPlacementError("duration is required")

    return Placement(
        id=require_id(record.get("id"), "id"),
        routine_id=require_id(_ref_id(record, "routineId", "routine"), "routineId"),
        room_id=require_id(_ref_id(record, "roomId", "room"), "roomId"),
        interval=Interval(
            date=DateKey.parse(require_id(record.get("date"), "date")),
            start_minutes=start,
            duration=_as_int(record["duration"], "duration"),
        ),
    )


def placement_payload(placement: Placement) -> dict[str, Any]:
    """
    Body of a create (POST) or update (PATCH) request.
    """
    return {
        "date": placement.date.iso(),
        "startMinutes": placement.start_minutes,
        "duration": placement.duration,
        "routineId": placement.routine_id,
        "roomId": placement.room_id,
    }


def placement_to_dict(placement: Placement) -> dict[str, Any]:
    return {"id": placement.id, **placement_payload(placement)}


def room_to_dict(room: Room) -> dict[str, Any]:
    return {"id": room.id, "name": room.name, "isActive": room.is_active}


def dancer_to_dict(dancer: Dancer) -> dict[str, Any]:
    return {"id": dancer.id, "name": dancer.name, "classes": list(dancer.classes)}


def routine_to_dict(routine: Routine) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": routine.id,
        "songTitle": routine.title,
        "teacher": {"id": routine.teacher.id, "name": routine.teacher.name},
        "genre": {"id": routine.genre.id, "name": routine.genre.name},
        "duration": routine.duration,
        "dancerIds": sorted(routine.dancer_ids),
        "color": routine.color,
        "isInactive": routine.is_inactive,
    }
    if routine.teacher.email:
        out["teacher"]["email"] = routine.teacher.email
    if routine.level is not None:
        out["level"] = {"id": routine.level.id, "name": routine.level.name, "color": routine.level.color}
    if routine.notes:
        out["notes"] = routine.notes
    return out
