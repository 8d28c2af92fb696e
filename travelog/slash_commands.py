"""Slash command registry used by the interactive shell and one-shot CLI.

Each module under ``travelog.commands`` exports a ``COMMAND``; the router
dispatches ``/name args...`` to it and turns journal errors into the usual
``[name] message`` reply so the shell never crashes on a bad id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from io import StringIO
import logging
import shutil
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .configuration import ConfigurationBundle
from .errors import TravelogError

if TYPE_CHECKING:
    from .runtime import JournalRuntime

logger = logging.getLogger("travelog.slash_commands")

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], str]

MIN_RENDER_WIDTH = 20
MIN_RENDER_HEIGHT = 10


@dataclass
class SlashCommandContext:
    config: ConfigurationBundle
    router: "CommandRouter"
    runtime: Optional["JournalRuntime"] = None
    # Shared across invocations; commands keep long-lived objects here (the API server).
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlashCommand:
    name: str
    description: str
    handler: SlashCommandHandler
    requires_runtime: bool = False


class CommandRouter:
    """Name-to-command table plus the dispatch rules around it."""

    def __init__(
        self,
        config: ConfigurationBundle,
        runtime: Optional["JournalRuntime"] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.metadata = metadata or {}
        self._registry: Dict[str, SlashCommand] = {}

    def register(self, command: SlashCommand) -> None:
        self._registry[command.name.lower()] = command

    def get(self, command_name: str) -> Optional[SlashCommand]:
        return self._registry.get(command_name.lower())

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._registry)

    def commands(self) -> Sequence[SlashCommand]:
        return [self._registry[name] for name in self.command_names]

    def handle(self, command_name: str, args: List[str]) -> str:
        command = self.get(command_name)
        if command is None:
            return f"[router] Unknown command '/{command_name}'. Try /help."
        if command.requires_runtime and self.runtime is None:
            return f"[router] '/{command_name}' needs the journal runtime, which is not running."
        try:
            return command.handler(self._context(), args)
        except TravelogError as exc:
            logger.info("/%s failed: %s", command.name, exc)
            return f"[{command.name}] {exc}"

    def _context(self) -> SlashCommandContext:
        return SlashCommandContext(
            config=self.config,
            router=self,
            runtime=self.runtime,
            metadata=self.metadata,
        )


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    def _render(console: Console) -> None:
        table = Table(title="Slash Commands", show_header=True, header_style="bold cyan")
        table.add_column("Command", style="green", no_wrap=True)
        table.add_column("Description")
        for command in commands:
            table.add_row(f"/{command.name}", command.description)
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Capture what ``render_fn`` prints to a recording console as ANSI text."""

    columns, lines = shutil.get_terminal_size(fallback=(80, 24))
    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        width=max(MIN_RENDER_WIDTH, columns),
        height=max(MIN_RENDER_HEIGHT, lines),
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


def format_millis(millis: int) -> str:
    """Human-readable UTC time for an epoch-millis value; 'never' for 0."""
    if not millis:
        return "never"
    stamp = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return stamp.strftime("%Y-%m-%d %H:%M:%S UTC")


__all__ = [
    "SlashCommand",
    "SlashCommandContext",
    "CommandRouter",
    "format_millis",
    "render_help_table",
    "render_rich",
]
