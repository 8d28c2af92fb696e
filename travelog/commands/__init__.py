"""Slash command registry."""

from __future__ import annotations

from .api import COMMAND as API_COMMAND
from .conflicts import COMMAND as CONFLICTS_COMMAND
from .help import COMMAND as HELP_COMMAND
from .photos import COMMAND as PHOTOS_COMMAND
from .profile import COMMAND as PROFILE_COMMAND
from .status import COMMAND as STATUS_COMMAND
from .sync import COMMAND as SYNC_COMMAND

COMMANDS = [
    STATUS_COMMAND,
    HELP_COMMAND,
    API_COMMAND,
    CONFLICTS_COMMAND,
    PHOTOS_COMMAND,
    PROFILE_COMMAND,
    SYNC_COMMAND,
]

__all__ = ["COMMANDS"]
