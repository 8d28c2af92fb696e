"""Slash command for browsing and editing journal photos."""

from __future__ import annotations

import shlex
from typing import Dict, List, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from ..models import SyncStatus
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

STATUS_STYLES = {
    SyncStatus.SYNCED: "green",
    SyncStatus.PENDING: "yellow",
    SyncStatus.ERROR: "red",
    SyncStatus.CONFLICT: "magenta",
}

# /photos edit option name -> record field
EDIT_OPTIONS = {
    "title": "title",
    "note": "note",
    "location": "location_name",
    "uri": "uri",
}


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return _list_photos(context, [])

    subcommand = args[0].lower()

    if subcommand == "list":
        return _list_photos(context, args[1:])
    elif subcommand == "add":
        return _add_photo(context, args[1:])
    elif subcommand == "edit":
        return _edit_photo(context, args[1:])
    elif subcommand == "remove":
        return _remove_photo(context, args[1:])
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[photos] Unknown subcommand '{subcommand}'. Use /photos help for usage."


def _parse_options(args: List[str]) -> Tuple[List[str], Dict[str, str]]:
    """Split ``key=value`` options from positional arguments."""
    tokens = shlex.split(" ".join(args))
    positional: List[str] = []
    options: Dict[str, str] = {}
    for token in tokens:
        if "=" in token:
            key, value = token.split("=", 1)
            options[key.strip().lower()] = value
        else:
            positional.append(token)
    return positional, options


def _list_photos(context: SlashCommandContext, args: List[str]) -> str:
    photos = context.runtime.coordinator.photos
    if args and args[0].lower() in {s.value.lower() for s in SyncStatus}:
        wanted = args[0].lower()
        photos = [p for p in photos if p.sync_status.value.lower() == wanted]
    if not photos:
        return "[photos] No photos."

    def _render(console: Console) -> None:
        table = Table(title=f"Photos ({len(photos)})", box=box.SIMPLE, header_style="bold cyan")
        table.add_column("ID", style="dim", overflow="fold")
        table.add_column("Date", no_wrap=True)
        table.add_column("Title", overflow="fold")
        table.add_column("Location", overflow="fold")
        table.add_column("Status", no_wrap=True)
        table.add_column("v", justify="right")
        for photo in photos:
            style = STATUS_STYLES.get(photo.sync_status, "white")
            table.add_row(
                photo.id,
                photo.date_iso,
                photo.title or "",
                photo.location_name or "",
                f"[{style}]{photo.sync_status.value}[/{style}]",
                str(photo.version),
            )
        console.print(table)

    return render_rich(_render)


def _add_photo(context: SlashCommandContext, args: List[str]) -> str:
    positional, options = _parse_options(args)
    if not positional:
        return "[photos] Usage: /photos add <path> [title=...] [note=...] [location=...]"
    runtime = context.runtime
    photo = runtime.call(
        runtime.coordinator.add_record(
            positional[0],
            options.get("location"),
            title=options.get("title"),
            note=options.get("note"),
        )
    )
    return f"[photos] Added {photo.id} ({photo.date_iso}), pending upload"


def _edit_photo(context: SlashCommandContext, args: List[str]) -> str:
    positional, options = _parse_options(args)
    if not positional or not options:
        return "[photos] Usage: /photos edit <id> title=... note=... location=... uri=..."
    unknown = sorted(set(options) - set(EDIT_OPTIONS))
    if unknown:
        return f"[photos] Unknown field(s): {', '.join(unknown)}"
    changes = {EDIT_OPTIONS[key]: value for key, value in options.items()}
    runtime = context.runtime
    photo = runtime.call(runtime.coordinator.update_record(positional[0], **changes))
    return f"[photos] Updated {photo.id} (version {photo.version})"


def _remove_photo(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return "[photos] Usage: /photos remove <id>"
    runtime = context.runtime
    removed = runtime.call(runtime.coordinator.remove_record(args[0]))
    if removed:
        return f"[photos] Removed {args[0]}"
    return f"[photos] {args[0]} hidden; remote delete will be retried on the next sync"


def _show_help() -> str:
    return """[photos] Usage:
  /photos [list] [status]            List photos, optionally by sync status
  /photos add <path> [title=..] [note=..] [location=..]
  /photos edit <id> title=.. note=.. location=.. uri=..
  /photos remove <id>
  /photos help"""


COMMAND = SlashCommand(
    name="photos",
    description="List, add, edit or remove photos. Usage: /photos [list|add|edit|remove]",
    handler=_handler,
    requires_runtime=True,
)
