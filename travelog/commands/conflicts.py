"""Slash command for reviewing and settling sync conflicts."""

from __future__ import annotations

from typing import List

from rich import box
from rich.console import Console
from rich.table import Table

from ..coordinator import PROFILE_RECORD_ID
from ..errors import NetworkUnavailableError, RemoteError, SyncInProgressError
from ..models import Photo
from ..slash_commands import SlashCommand, SlashCommandContext, format_millis, render_rich


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args or args[0].lower() == "list":
        return _list_conflicts(context)
    if args[0].lower() == "resolve":
        return _resolve(context, args[1:])
    return "[conflicts] Usage: /conflicts [list] | /conflicts resolve <id> keepLocal|keepServer"


def _list_conflicts(context: SlashCommandContext) -> str:
    coordinator = context.runtime.coordinator
    conflicts = coordinator.conflicts()
    profile = coordinator.profile
    if not conflicts and not profile.in_conflict:
        return "[conflicts] No conflicts."

    def _render(console: Console) -> None:
        table = Table(title="Conflicts", box=box.SIMPLE, header_style="bold magenta")
        table.add_column("ID", overflow="fold")
        table.add_column("Title", overflow="fold")
        table.add_column("Local modified", no_wrap=True)
        table.add_column("v", justify="right")
        for photo in conflicts:
            table.add_row(photo.id, photo.title or "", format_millis(photo.last_modified), str(photo.version))
        if profile.in_conflict:
            table.add_row(PROFILE_RECORD_ID, profile.name, format_millis(profile.last_modified), str(profile.version))
        console.print(table)
        console.print("[dim]Resolve with /conflicts resolve <id> keepLocal|keepServer[/dim]")

    return render_rich(_render)


def _resolve(context: SlashCommandContext, args: List[str]) -> str:
    if len(args) < 2:
        return "[conflicts] Usage: /conflicts resolve <id> keepLocal|keepServer"
    record_id, choice = args[0], args[1]
    runtime = context.runtime
    try:
        record = runtime.call(runtime.coordinator.resolve_conflict(record_id, choice))
    except ValueError as e:
        return f"[conflicts] {e}"
    except SyncInProgressError:
        return "[conflicts] A sync is running; try again when it finishes."
    except NetworkUnavailableError as e:
        return f"[conflicts] Offline: {e}"
    except RemoteError as e:
        return f"[conflicts] Remote store refused the resolution: {e}"
    label = record.id if isinstance(record, Photo) else PROFILE_RECORD_ID
    return f"[conflicts] {label} is {record.sync_status.value} (version {record.version})"


COMMAND = SlashCommand(
    name="conflicts",
    description="List conflicts or resolve one. Usage: /conflicts [list|resolve <id> keepLocal|keepServer]",
    handler=_handler,
    requires_runtime=True,
)
