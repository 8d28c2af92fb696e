"""Slash command for journal synchronization."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.table import Table

from ..errors import NetworkUnavailableError, SyncInProgressError
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    format_millis,
    render_rich,
)


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage journal synchronization."""

    if not args:
        return _show_status(context)

    subcommand = args[0].lower()

    if subcommand == "status":
        return _show_status(context)
    elif subcommand == "now":
        return _run_sync(context)
    elif subcommand == "auto":
        return _set_auto(context, args[1:])
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[sync] Unknown subcommand '{subcommand}'. Use /sync help for usage."


def _show_status(context: SlashCommandContext) -> str:
    """Show sync status."""
    runtime = context.runtime
    coordinator = runtime.coordinator
    state = coordinator.state

    def _render(console: Console) -> None:
        table = Table(title="Journal Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("User", runtime.user_id)
        table.add_row("Online", str(state.is_online))
        table.add_row("Syncing", str(state.is_syncing))
        if state.progress:
            table.add_row("Progress", state.progress)
        table.add_row("Last Sync", format_millis(state.last_sync))
        table.add_row("Pending", str(state.pending_count))
        table.add_row("Conflicts", str(state.conflict_count))
        table.add_row("Auto-sync", "on" if coordinator.auto_sync_enabled else "off")
        table.add_row("Interval", f"{runtime.settings.interval_minutes:g} min")
        table.add_row("Conflict Strategy", runtime.settings.conflict_strategy)

        console.print(table)

    return render_rich(_render)


def _run_sync(context: SlashCommandContext) -> str:
    """Run a sync pass now."""
    runtime = context.runtime
    try:
        result = runtime.call(runtime.coordinator.sync_now())
    except SyncInProgressError:
        return "[sync] A sync is already running; try again shortly."
    except NetworkUnavailableError as e:
        return f"[sync] Offline: {e}. Changes stay queued locally."

    lines = [f"[sync] Sync completed in {result.duration_ms} ms: {result.summary()}"]
    if result.profile_status != "unchanged":
        lines.append(f"  Profile: {result.profile_status}")
    for error in result.errors[:10]:
        lines.append(f"  ! {error}")
    if len(result.errors) > 10:
        lines.append(f"  ... and {len(result.errors) - 10} more errors")
    return "\n".join(lines)


def _set_auto(context: SlashCommandContext, args: List[str]) -> str:
    if not args or args[0].lower() not in {"on", "off"}:
        return "[sync] Usage: /sync auto on|off"
    enabled = args[0].lower() == "on"
    runtime = context.runtime
    runtime.call(runtime.coordinator.enable_auto_sync(enabled))
    if enabled:
        return f"[sync] Auto-sync on (every {runtime.settings.interval_minutes:g} min)"
    return "[sync] Auto-sync off"


def _show_help() -> str:
    """Show sync command help."""
    return """[sync] Usage:
  /sync              Show sync status
  /sync status       Show sync status
  /sync now          Run a full sync pass
  /sync auto on|off  Toggle periodic sync
  /sync help         Show this help

Configuration (in <TRAVELOG_HOME>/config/*.yml):
  sync:
    auto_sync: true
    interval_minutes: 15
    conflict_strategy: newest_wins  # newest_wins, keep_local, keep_server, manual
    max_concurrency: 4"""


COMMAND = SlashCommand(
    name="sync",
    description="Synchronize the journal. Usage: /sync [status|now|auto on|off]",
    handler=_handler,
    requires_runtime=True,
)
