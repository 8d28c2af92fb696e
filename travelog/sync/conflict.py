"""Conflict resolution strategies for journal record synchronization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger("travelog.sync.conflict")


class ConflictStrategy(str, Enum):
    """Strategies for resolving sync conflicts."""
    NEWEST_WINS = "newest_wins"
    KEEP_LOCAL = "keep_local"
    KEEP_SERVER = "keep_server"
    MANUAL = "manual"


class ConflictAction(str, Enum):
    PUSH = "push"    # overwrite the remote document with the local record
    PULL = "pull"    # overwrite the local record with the remote document
    SKIP = "skip"    # leave the conflict for the user


# Names the journal UI uses for an explicit user choice.
USER_CHOICES = {
    "keeplocal": ConflictStrategy.KEEP_LOCAL,
    "keep_local": ConflictStrategy.KEEP_LOCAL,
    "local": ConflictStrategy.KEEP_LOCAL,
    "keepserver": ConflictStrategy.KEEP_SERVER,
    "keep_server": ConflictStrategy.KEEP_SERVER,
    "server": ConflictStrategy.KEEP_SERVER,
    "remote": ConflictStrategy.KEEP_SERVER,
}


@dataclass
class ConflictResolution:
    """Outcome of resolving one conflicting record."""

    record_id: str
    action: ConflictAction
    message: str = ""


class ConflictResolver:
    """Chooses a direction for conflicting records."""

    def __init__(self, strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS):
        self.strategy = strategy

    @classmethod
    def for_choice(cls, choice: str) -> "ConflictResolver":
        """Resolver for an explicit ``keepLocal`` / ``keepServer`` user choice."""
        strategy = USER_CHOICES.get(choice.strip().lower())
        if strategy is None:
            raise ValueError(
                f"Unknown conflict resolution '{choice}'; expected keepLocal or keepServer"
            )
        return cls(strategy)

    def resolve(
        self,
        record_id: str,
        local_modified: int,
        remote_modified: Optional[int],
    ) -> ConflictResolution:
        """Decide a direction given both sides' ``lastModified``.

        ``remote_modified`` is ``None`` when the remote document no longer
        exists; the local record is then pushed back unless resolution is manual.
        """
        if self.strategy is ConflictStrategy.MANUAL:
            return ConflictResolution(record_id, ConflictAction.SKIP, "Marked for manual resolution")

        if remote_modified is None:
            return ConflictResolution(record_id, ConflictAction.PUSH, "Remote copy missing")

        if self.strategy is ConflictStrategy.KEEP_LOCAL:
            return ConflictResolution(record_id, ConflictAction.PUSH, "Local wins strategy")
        if self.strategy is ConflictStrategy.KEEP_SERVER:
            return ConflictResolution(record_id, ConflictAction.PULL, "Server wins strategy")

        if local_modified >= remote_modified:
            return ConflictResolution(
                record_id,
                ConflictAction.PUSH,
                f"Local is newer ({local_modified} >= {remote_modified})",
            )
        return ConflictResolution(
            record_id,
            ConflictAction.PULL,
            f"Remote is newer ({remote_modified} > {local_modified})",
        )


__all__ = [
    "ConflictStrategy",
    "ConflictAction",
    "ConflictResolution",
    "ConflictResolver",
    "USER_CHOICES",
]
