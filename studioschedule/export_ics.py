"""
iCalendar (.ics) export.

Writes the rehearsal schedule into a calendar file that can be imported into:
- Google Calendar
- Outlook
- Apple Calendar
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping

from studioschedule.model import DateKey, Placement, Room, Routine


def _ics_escape(text: str) -> str:
    """
    Escape text for ICS fields (very small subset, sufficient for our use).
    """
    return (
        text.replace("\\", "\\\\").replace("\r\n", "\\n").replace("\n", "\\n").replace(";", "\\;").replace(",", "\\,")
    )


def _dt_local(date: DateKey, minutes: int) -> str:
    """
    Local (floating) datetime string 'YYYYMMDDTHHMM00'.
    """
    return f"{date.year:04d}{date.month:02d}{date.day:02d}T{minutes // 60:02d}{minutes % 60:02d}00"


def export_placements_to_ics(
    placements: Iterable[Placement],
    routines: Mapping[str, Routine],
    rooms: Mapping[str, Room],
    out_path: str | Path,
) -> int:
    """
    Export placements to an .ics file. Returns number of exported rehearsals.
    """
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    lines: list[str] = []
    lines.append("BEGIN:VCALENDAR")
    lines.append("VERSION:2.0")
    lines.append("PRODID:-//StudioSchedule//EN")
    lines.append("CALSCALE:GREGORIAN")

    dtstamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    count = 0
    for p in sorted(placements, key=lambda x: (x.date, x.start_minutes)):
        routine = routines.get(p.routine_id)
        room = rooms.get(p.room_id)
        summary = routine.title if routine and routine.title else "Rehearsal"

        lines.append("BEGIN:VEVENT")
        lines.append(f"UID:{_ics_escape(p.id)}@studioschedule")
        lines.append(f"DTSTAMP:{dtstamp}")
        lines.append(f"DTSTART:{_dt_local(p.date, p.start_minutes)}")
        lines.append(f"DTEND:{_dt_local(p.date, p.end_minutes)}")
        lines.append(f"SUMMARY:{_ics_escape(summary)}")
        if room is not None and room.name:
            lines.append(f"LOCATION:{_ics_escape(room.name)}")
        if routine is not None:
            details = [f"Teacher: {routine.teacher.name}" if routine.teacher.name else ""]
            if routine.genre.name:
                details.append(f"Genre: {routine.genre.name}")
            if routine.level is not None:
                details.append(f"Level: {routine.level.name}")
            text = "\n".join(d for d in details if d)
            if text:
                lines.append(f"DESCRIPTION:{_ics_escape(text)}")
        lines.append("END:VEVENT")
        count += 1

    lines.append("END:VCALENDAR")

    # ICS standard uses CRLF
    out.write_text("\r\n".join(lines) + "\r\n", encoding="utf-8")
    return count
