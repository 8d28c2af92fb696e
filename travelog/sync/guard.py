"""At-most-one sync pass per user."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Set

from ..errors import SyncInProgressError

logger = logging.getLogger("travelog.sync.guard")


class SyncGuard:
    """In-flight flags for sync passes, keyed by user id.

    Acquisition happens synchronously (no suspension point between the check
    and the set), so coroutines sharing one event loop cannot both acquire.
    """

    def __init__(self) -> None:
        self._active: Set[str] = set()

    def is_active(self, user_id: str) -> bool:
        return user_id in self._active

    @property
    def active_users(self) -> Set[str]:
        return set(self._active)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Hold the in-flight flag for ``user_id``; released on every exit path."""
        if user_id in self._active:
            logger.info("Rejected concurrent sync for %s", user_id)
            raise SyncInProgressError(user_id)
        self._active.add(user_id)
        try:
            yield
        finally:
            self._active.discard(user_id)


__all__ = ["SyncGuard"]
