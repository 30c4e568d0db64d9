"""
CLI (Command Line Interface).

Terminal commands over the local workspace, e.g.:

    studioschedule room add "Studio A" --id room-1
    studioschedule dancer add "Ana" --id d1
    studioschedule routine add "Swan Lake" --teacher "Maria Santos" --genre Ballet --dancer d1
    studioschedule add <routine_id> <room_id> 2024-06-01 09:00
    studioschedule move <placement_id> <room_id> 2024-06-01 10:30
    studioschedule resize <placement_id> 45
    studioschedule conflicts
    studioschedule status
    studioschedule save
    studioschedule export schedule.ics

Edits only touch the workspace draft; `save` pushes them to the store (the
web app when an API URL is configured, otherwise the local store file).
"""

from __future__ import annotations

import argparse
import uuid
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from studioschedule.api import HttpScheduleStore
from studioschedule.config import StudioScheduleConfig, get_config
from studioschedule.errors import HardConstraintViolation, SchedulingError
from studioschedule.export_ics import export_placements_to_ics
from studioschedule.log import setup_logging
from studioschedule.model import (
    Dancer,
    DancerConflict,
    DateKey,
    Genre,
    Placement,
    Room,
    Routine,
    Teacher,
    require_id,
)
from studioschedule.session import (
    THRESHOLD_REACHED,
    AttemptResult,
    ConflictState,
    ScheduleEvent,
    ScheduleSession,
)
from studioschedule.storage import FileScheduleStore, load_workspace, save_workspace
from studioschedule.sync import ScheduleStore, commit_changes, load_session
from studioschedule.timeutil import format_range, format_time, parse_clock

console = Console()


def _workspace_path(args: argparse.Namespace, config: StudioScheduleConfig) -> Path:
    return Path(args.workspace) if args.workspace else config.workspace_path


def _store(args: argparse.Namespace, config: StudioScheduleConfig) -> ScheduleStore:
    api_url = args.api or config.api_url
    if api_url:
        return HttpScheduleStore(api_url, token=config.api_token, timeout=config.request_timeout)
    if args.store:
        return FileScheduleStore(args.store)
    if args.workspace:
        return FileScheduleStore(Path(args.workspace).with_name("store.json"))
    return FileScheduleStore(config.resolved_store_path())


def _on_event(session: ScheduleSession, event: ScheduleEvent) -> None:
    if event.kind == THRESHOLD_REACHED:
        routine = session.routines.get(event.payload["routine_id"])
        title = routine.title if routine else event.payload["routine_id"]
        console.print(f"[bold]{title}[/bold] has been scheduled {event.payload['count']} times and is now maxed out.")


def _describe(session: ScheduleSession, p: Placement) -> str:
    routine = session.routines.get(p.routine_id)
    room = session.rooms.get(p.room_id)
    title = routine.title if routine else p.routine_id
    where = room.name if room else p.room_id
    return f'"{title}" in {where} on {p.date} {format_range(p.start_minutes, p.end_minutes)}'


def _conflict_table(conflicts: tuple[DancerConflict, ...] | list[DancerConflict]) -> Table:
    table = Table(title="Dancer conflicts")
    table.add_column("Dancer")
    table.add_column("Time")
    table.add_column("Already rehearsing")
    for c in conflicts:
        others = ", ".join(f"{cp.routine_title} ({cp.room_name})" for cp in c.conflicting_placements)
        table.add_row(c.dancer_name, format_time(c.time_slot.hour, c.time_slot.minute), others)
    return table


def _settle(session: ScheduleSession, result: AttemptResult, args: argparse.Namespace) -> int:
    """
    Print the outcome of an attempt and resolve a pending dancer conflict.
    """
    if result.outcome is ConflictState.COMMITTED:
        console.print(f"Scheduled {_describe(session, result.placement)} (id: {result.placement.id})")
        return 0

    console.print(_conflict_table(result.conflicts))
    if args.yes:
        decision = True
    elif args.no:
        decision = False
    else:
        decision = Confirm.ask("Schedule anyway?", default=False, console=console)

    if decision:
        placement = session.confirm()
        console.print(f"Scheduled anyway: {_describe(session, placement)} (id: {placement.id})")
    else:
        session.cancel()
        console.print("Cancelled. Schedule unchanged.")
    return 0


def _cmd_rooms(args: argparse.Namespace, session: ScheduleSession) -> int:
    table = Table(title="Rooms")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Active")
    for room in sorted(session.rooms.values(), key=lambda r: r.name.lower()):
        if room.is_active or args.all:
            table.add_row(room.id, room.name, "yes" if room.is_active else "no")
    console.print(table)
    return 0


def _cmd_routines(args: argparse.Namespace, session: ScheduleSession) -> int:
    table = Table(title="Routines")
    for col in ("ID", "Title", "Teacher", "Genre", "Level", "Minutes", "Dancers", "Scheduled", "Hours"):
        table.add_column(col)
    for r in sorted(session.routines.values(), key=lambda x: x.title.lower()):
        if r.is_inactive and not args.all:
            continue
        table.add_row(
            r.id,
            r.title,
            r.teacher.name,
            r.genre.name,
            r.level.name if r.level else "",
            str(r.duration),
            str(len(r.dancer_ids)),
            str(session.occurrences(r.id)),
            f"{session.scheduled_hours(r.id):.1f}",
        )
    console.print(table)
    return 0


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _cmd_room(args: argparse.Namespace, session: ScheduleSession) -> int:
    room = session.add_room(Room(id=args.id or _new_id("room"), name=require_id(args.name, "room name")))
    console.print(f"Saved room {room.name} (id: {room.id})")
    return 0


def _cmd_dancer(args: argparse.Namespace, session: ScheduleSession) -> int:
    dancer = session.add_dancer(
        Dancer(
            id=args.id or _new_id("dancer"),
            name=require_id(args.name, "dancer name"),
            classes=list(args.classes or []),
        )
    )
    console.print(f"Saved dancer {dancer.name} (id: {dancer.id})")
    return 0


def _cmd_routine(args: argparse.Namespace, session: ScheduleSession) -> int:
    # reuse the teacher and genre records of existing routines with the same name
    teachers = {r.teacher.name.lower(): r.teacher for r in session.routines.values()}
    genres = {r.genre.name.lower(): r.genre for r in session.routines.values()}
    teacher = teachers.get(args.teacher.lower()) or Teacher(_new_id("teacher"), args.teacher)
    genre = genres.get(args.genre.lower()) or Genre(_new_id("genre"), args.genre)

    routine = session.add_routine(
        Routine(
            id=args.id or _new_id("routine"),
            title=require_id(args.title, "routine title"),
            teacher=teacher,
            genre=genre,
            duration=args.duration,
            dancer_ids=frozenset(args.dancers or []),
            notes=args.notes,
        )
    )
    console.print(f"Saved routine {routine.title} (id: {routine.id}, {len(routine.dancer_ids)} dancers)")
    return 0


def _cmd_show(args: argparse.Namespace, session: ScheduleSession) -> int:
    if args.date:
        placements = session.placements_on(DateKey.parse(args.date))
    else:
        placements = sorted(session.draft, key=lambda p: (p.date, p.start_minutes, p.room_id))

    if not placements:
        console.print("No rehearsals scheduled.")
        return 0

    changes = session.pending_diff()
    new_ids = {p.id for p in changes.to_create}
    changed_ids = {p.id for p in changes.to_update}

    table = Table(title="Schedule")
    for col in ("Date", "Time", "Room", "Routine", "ID", ""):
        table.add_column(col)
    for p in placements:
        routine = session.routines.get(p.routine_id)
        room = session.rooms.get(p.room_id)
        mark = "new" if p.id in new_ids else ("changed" if p.id in changed_ids else "")
        table.add_row(
            str(p.date),
            format_range(p.start_minutes, p.end_minutes),
            room.name if room else p.room_id,
            routine.title if routine else p.routine_id,
            p.id,
            mark,
        )
    console.print(table)
    return 0


def _cmd_add(args: argparse.Namespace, session: ScheduleSession) -> int:
    start = parse_clock(args.time)
    result = session.propose_new(
        args.routine_id, args.room_id, DateKey.parse(args.date), start // 60, start % 60, duration=args.duration
    )
    return _settle(session, result, args)


def _cmd_move(args: argparse.Namespace, session: ScheduleSession) -> int:
    start = parse_clock(args.time)
    result = session.propose_move(args.placement_id, args.room_id, DateKey.parse(args.date), start // 60, start % 60)
    return _settle(session, result, args)


def _cmd_resize(args: argparse.Namespace, session: ScheduleSession) -> int:
    result = session.propose_resize(args.placement_id, args.minutes)
    return _settle(session, result, args)


def _cmd_remove(args: argparse.Namespace, session: ScheduleSession) -> int:
    removed = session.remove(args.placement_id)
    console.print(f"Removed {_describe(session, removed)} (not deleted from the store until save)")
    return 0


def _cmd_conflicts(args: argparse.Namespace, session: ScheduleSession) -> int:
    overview = session.conflict_overview()
    if not overview:
        console.print("No conflicts found.")
        return 0

    table = Table(title=f"Conflicts found: {len(overview)}")
    for col in ("Date", "Time", "Dancer", "Routine", "Clashes with"):
        table.add_column(col)
    for placement, c in overview:
        routine = session.routines.get(placement.routine_id)
        table.add_row(
            str(placement.date),
            format_time(c.time_slot.hour, c.time_slot.minute),
            c.dancer_name,
            routine.title if routine else placement.routine_id,
            ", ".join(f"{cp.routine_title} ({cp.room_name})" for cp in c.conflicting_placements),
        )
    console.print(table)
    return 0


def _cmd_status(args: argparse.Namespace, session: ScheduleSession) -> int:
    changes = session.pending_diff()
    if changes.is_empty:
        console.print("No unsaved changes.")
        return 0
    console.print(
        f"Unsaved changes: {len(changes.to_create)} new, "
        f"{len(changes.to_update)} changed, {len(changes.to_delete)} removed"
    )
    for label, items in (("+", changes.to_create), ("~", changes.to_update), ("-", changes.to_delete)):
        for p in items:
            console.print(f"  {label} {_describe(session, p)}")
    return 0


def _cmd_save(args: argparse.Namespace, session: ScheduleSession, config: StudioScheduleConfig) -> int:
    store = _store(args, config)
    if isinstance(store, FileScheduleStore) and (session.rooms or session.routines or session.dancers):
        # the offline store's catalog mirrors the workspace
        store.seed(session.rooms.values(), session.routines.values(), session.dancers.values())
    if not session.is_dirty:
        console.print("No unsaved changes.")
        return 0
    report = commit_changes(session, store, max_workers=config.max_workers)
    console.print(
        f"Saved: {len(report.created)} created, {len(report.updated)} updated, {len(report.deleted)} deleted"
    )
    if report.failures:
        for failure in report.failures:
            console.print(f"[red]Failed to {failure.operation} {_describe(session, failure.placement)}: {failure.error}[/red]")
        console.print("Some changes are still unsaved.")
        return 1
    return 0


def _cmd_pull(args: argparse.Namespace, session: ScheduleSession, config: StudioScheduleConfig) -> ScheduleSession:
    if session.is_dirty and not args.force:
        raise SchedulingError("Workspace has unsaved changes; save them first or pass --force")
    fresh = load_session(_store(args, config))
    console.print(
        f"Loaded {len(fresh.rooms)} rooms, {len(fresh.routines)} routines, {len(fresh.saved)} scheduled rehearsals"
    )
    return fresh


def _cmd_export(args: argparse.Namespace, session: ScheduleSession) -> int:
    if not session.draft:
        console.print("No scheduled rehearsals to export.")
        return 0
    n = export_placements_to_ics(session.draft, session.routines, session.rooms, args.out)
    console.print(f"Exported {n} rehearsals to: {args.out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="studioschedule", description="Dance studio rehearsal scheduler")
    parser.add_argument("--workspace", type=str, default=None, help="Workspace JSON file")
    parser.add_argument("--api", type=str, default=None, help="Base URL of the studio web app")
    parser.add_argument("--store", type=str, default=None, help="Store JSON file (when no API is used)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_rooms = sub.add_parser("rooms", help="List rooms")
    p_rooms.add_argument("--all", action="store_true", help="Include inactive rooms")

    p_routines = sub.add_parser("routines", help="List routines")
    p_routines.add_argument("--all", action="store_true", help="Include inactive routines")

    p_room = sub.add_parser("room", help="Edit rooms")
    room_sub = p_room.add_subparsers(dest="action", required=True)
    p_room_add = room_sub.add_parser("add", help="Add or replace a room")
    p_room_add.add_argument("name", type=str)
    p_room_add.add_argument("--id", type=str, default=None, help="Room id (default: generated)")

    p_dancer = sub.add_parser("dancer", help="Edit dancers")
    dancer_sub = p_dancer.add_subparsers(dest="action", required=True)
    p_dancer_add = dancer_sub.add_parser("add", help="Add or replace a dancer")
    p_dancer_add.add_argument("name", type=str)
    p_dancer_add.add_argument("--id", type=str, default=None, help="Dancer id (default: generated)")
    p_dancer_add.add_argument("--class", dest="classes", action="append", help="Class name (repeatable)")

    p_routine = sub.add_parser("routine", help="Edit routines")
    routine_sub = p_routine.add_subparsers(dest="action", required=True)
    p_routine_add = routine_sub.add_parser("add", help="Add or replace a routine")
    p_routine_add.add_argument("title", type=str)
    p_routine_add.add_argument("--teacher", type=str, required=True)
    p_routine_add.add_argument("--genre", type=str, required=True)
    p_routine_add.add_argument("--duration", type=int, default=60, help="Default length in minutes")
    p_routine_add.add_argument("--dancer", dest="dancers", action="append", help="Dancer id (repeatable)")
    p_routine_add.add_argument("--notes", type=str, default=None)
    p_routine_add.add_argument("--id", type=str, default=None, help="Routine id (default: generated)")

    p_show = sub.add_parser("show", help="Show the draft schedule")
    p_show.add_argument("date", nargs="?", default=None, help="Only this date (YYYY-MM-DD)")

    def decision_flags(p: argparse.ArgumentParser) -> None:
        group = p.add_mutually_exclusive_group()
        group.add_argument("--yes", action="store_true", help="Schedule anyway on dancer conflicts")
        group.add_argument("--no", action="store_true", help="Cancel on dancer conflicts")

    p_add = sub.add_parser("add", help="Schedule a routine")
    p_add.add_argument("routine_id", type=str)
    p_add.add_argument("room_id", type=str)
    p_add.add_argument("date", type=str, help="YYYY-MM-DD")
    p_add.add_argument("time", type=str, help="Start time HH:MM")
    p_add.add_argument("--duration", type=int, default=None, help="Minutes (default: routine length)")
    decision_flags(p_add)

    p_move = sub.add_parser("move", help="Move a scheduled rehearsal")
    p_move.add_argument("placement_id", type=str)
    p_move.add_argument("room_id", type=str)
    p_move.add_argument("date", type=str, help="YYYY-MM-DD")
    p_move.add_argument("time", type=str, help="Start time HH:MM")
    decision_flags(p_move)

    p_resize = sub.add_parser("resize", help="Change the length of a scheduled rehearsal")
    p_resize.add_argument("placement_id", type=str)
    p_resize.add_argument("minutes", type=int)
    decision_flags(p_resize)

    p_remove = sub.add_parser("remove", help="Remove a scheduled rehearsal")
    p_remove.add_argument("placement_id", type=str)

    sub.add_parser("conflicts", help="Show dancer conflicts in the draft schedule")
    sub.add_parser("status", help="Show unsaved changes")
    sub.add_parser("save", help="Save schedule changes to the store")

    p_pull = sub.add_parser("pull", help="Reload rooms, routines and schedule from the store")
    p_pull.add_argument("--force", action="store_true", help="Discard unsaved changes")

    p_export = sub.add_parser("export", help="Export the draft schedule to .ics")
    p_export.add_argument("out", type=str, help="Output file path (e.g. schedule.ics)")

    return parser


READ_ONLY = {"rooms", "routines", "show", "conflicts", "status", "export"}


def main(argv: Optional[list[str]] = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    ws_path = _workspace_path(args, config)
    session = load_workspace(ws_path)
    session.subscribe(lambda event: _on_event(session, event))

    handlers = {
        "rooms": _cmd_rooms,
        "routines": _cmd_routines,
        "room": _cmd_room,
        "dancer": _cmd_dancer,
        "routine": _cmd_routine,
        "show": _cmd_show,
        "add": _cmd_add,
        "move": _cmd_move,
        "resize": _cmd_resize,
        "remove": _cmd_remove,
        "conflicts": _cmd_conflicts,
        "status": _cmd_status,
        "export": _cmd_export,
    }

    try:
        if args.command == "pull":
            session = _cmd_pull(args, session, config)
            code = 0
        elif args.command == "save":
            code = _cmd_save(args, session, config)
        else:
            code = handlers[args.command](args, session)
    except HardConstraintViolation as exc:
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(1)
    except (SchedulingError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise SystemExit(1)

    if args.command not in READ_ONLY:
        save_workspace(session, ws_path)
    raise SystemExit(code)
