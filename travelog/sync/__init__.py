"""Journal synchronization engine."""

from __future__ import annotations

from .conflict import (
    ConflictAction,
    ConflictResolution,
    ConflictResolver,
    ConflictStrategy,
    USER_CHOICES,
)
from .engine import ProgressCallback, SyncEngine, SyncOutcome, SyncResult, SyncSettings
from .guard import SyncGuard

__all__ = [
    # Engine
    "SyncEngine",
    "SyncSettings",
    "SyncResult",
    "SyncOutcome",
    "ProgressCallback",
    # Guard
    "SyncGuard",
    # Conflict
    "ConflictAction",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictStrategy",
    "USER_CHOICES",
]
