"""``/status``: data directory, sync state and configuration diagnostics."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, format_millis, render_rich

SECTION_ALIASES: Dict[str, Sequence[str]] = {
    "info": ("info", "summary"),
    "sync": ("sync", "journal"),
    "diagnostics": ("diagnostics", "diag", "diags"),
}
SHOW_ALL_FLAGS = {"--all", "-a", "all"}
DEFAULT_MAX_ROWS = 5

Renderer = Callable[[Console, SlashCommandContext, bool], None]


def _resolve_sections(args: Iterable[str]) -> Tuple[List[str], bool]:
    """Sections named in ``args`` (all of them when none is) and the show-all flag."""
    words = {arg.strip().lower() for arg in args}
    requested = [
        section for section, aliases in SECTION_ALIASES.items() if words.intersection(aliases)
    ]
    return requested or list(SECTION_ALIASES), bool(words & SHOW_ALL_FLAGS)


def _key_value_grid(rows: Sequence[Tuple[str, str]]) -> Table:
    grid = Table.grid(padding=(0, 1))
    grid.add_column("Key", style="bold", no_wrap=True)
    grid.add_column("Value", overflow="fold")
    for key, value in rows:
        grid.add_row(key, value)
    return grid


def _render_info(console: Console, context: SlashCommandContext, _: bool) -> None:
    config = context.config
    rows = [
        ("Data dir", str(config.data_dir)),
        ("Status", config.status),
        ("Config files", str(len(config.files_loaded))),
        ("Log path", str(config.log_path or "(not initialized)")),
    ]
    if context.runtime is not None:
        details = context.runtime.describe()
        rows += [("User", details["user_id"]), ("Remote", details["remote"])]
    console.print(Panel(_key_value_grid(rows), title="Runtime Status", border_style="green", padding=(0, 1)))


def _render_sync(console: Console, context: SlashCommandContext, _: bool) -> None:
    if context.runtime is None:
        console.print(Panel("[yellow]Journal runtime not started.", title="Sync", border_style="blue"))
        return
    coordinator = context.runtime.coordinator
    state = coordinator.state
    rows = [
        ("Online", "yes" if state.is_online else "no"),
        ("Syncing", state.progress or ("yes" if state.is_syncing else "no")),
        ("Last sync", format_millis(state.last_sync)),
        ("Photos", str(len(coordinator.photos))),
        ("Pending", str(state.pending_count)),
        ("Conflicts", str(state.conflict_count)),
        ("Auto-sync", "on" if coordinator.auto_sync_enabled else "off"),
    ]
    console.print(Panel(_key_value_grid(rows), title="Sync", border_style="blue", padding=(0, 1)))


def _render_diagnostics(console: Console, context: SlashCommandContext, show_all: bool) -> None:
    config = context.config
    diagnostics = config.diagnostics
    if not diagnostics:
        console.print(Panel("[green]No diagnostics reported.", title="Diagnostics", border_style="red"))
        return

    table = Table(show_header=True, header_style="bold red", box=box.SIMPLE, pad_edge=False)
    table.add_column("Lvl", style="red", no_wrap=True)
    table.add_column("Message", overflow="fold", ratio=2)
    table.add_column("Source", overflow="fold", ratio=2)

    limit = len(diagnostics) if show_all else DEFAULT_MAX_ROWS
    for diag in diagnostics[:limit]:
        table.add_row(diag.level.upper(), diag.message, str(diag.source or config.data_dir))

    console.print(Panel(table, title="Diagnostics", border_style="red", padding=(0, 1)))
    if len(diagnostics) > limit:
        console.print(
            f"\n[dim]Showing {limit}/{len(diagnostics)}. "
            "Use '/status diagnostics --all' for the full list.[/dim]"
        )


RENDERERS: Dict[str, Renderer] = {
    "info": _render_info,
    "sync": _render_sync,
    "diagnostics": _render_diagnostics,
}


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    sections, show_all = _resolve_sections(args)

    def _render(console: Console) -> None:
        for section in sections:
            RENDERERS[section](console, context, show_all)

    return render_rich(_render)


COMMAND = SlashCommand(
    name="status",
    description="Show data directory, sync state and configuration diagnostics.",
    handler=_handler,
)
