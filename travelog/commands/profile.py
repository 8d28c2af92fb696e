"""Slash command for the journal profile."""

from __future__ import annotations

import shlex
from typing import List

from rich.console import Console
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, format_millis, render_rich

PROFILE_OPTIONS = {"name": "name", "avatar": "avatar_uri"}


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args or args[0].lower() == "show":
        return _show_profile(context)
    if args[0].lower() == "set":
        return _set_profile(context, args[1:])
    return "[profile] Usage: /profile [show] | /profile set name=... avatar=..."


def _show_profile(context: SlashCommandContext) -> str:
    profile = context.runtime.coordinator.profile

    def _render(console: Console) -> None:
        table = Table(title="Profile", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")
        table.add_row("Name", profile.name)
        table.add_row("Avatar", profile.avatar_uri or "(none)")
        table.add_row("Status", profile.sync_status.value)
        table.add_row("Version", str(profile.version))
        table.add_row("Modified", format_millis(profile.last_modified))
        console.print(table)

    return render_rich(_render)


def _set_profile(context: SlashCommandContext, args: List[str]) -> str:
    changes = {}
    for token in shlex.split(" ".join(args)):
        key, sep, value = token.partition("=")
        field_name = PROFILE_OPTIONS.get(key.lower())
        if not sep or field_name is None:
            return f"[profile] Unsupported option '{token}'. Use name=... or avatar=..."
        if field_name == "avatar_uri" and not value:
            changes[field_name] = None  # "avatar=" clears it
        else:
            changes[field_name] = value
    if not changes:
        return "[profile] Nothing to change."
    runtime = context.runtime
    profile = runtime.call(runtime.coordinator.set_profile(**changes))
    return f"[profile] Saved (version {profile.version}), pending sync"


COMMAND = SlashCommand(
    name="profile",
    description="Show or edit the journal profile. Usage: /profile [show|set name=..]",
    handler=_handler,
    requires_runtime=True,
)
