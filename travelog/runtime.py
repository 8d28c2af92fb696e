"""Wires the journal components from configuration and hosts their event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Optional, TypeVar

from .configuration import ConfigurationBundle
from .coordinator import SyncCoordinator
from .models import DEFAULT_PROFILE_NAME
from .remote import RemoteClient, build_remote_client
from .storage import FileKeyValueBackend, LocalStore
from .sync import SyncEngine, SyncGuard, SyncSettings

logger = logging.getLogger("travelog.runtime")

T = TypeVar("T")

CALL_TIMEOUT = 300.0


class JournalRuntime:
    """Owns the store, remote client, engine and coordinator for one user.

    All coroutines run on a private event loop in a daemon thread so the
    synchronous console can drive them through ``call``.
    """

    def __init__(
        self,
        config: ConfigurationBundle,
        *,
        remote: Optional[RemoteClient] = None,
        user_id: Optional[str] = None,
    ):
        self.config = config
        account = config.section("account")
        storage_cfg = config.section("storage")

        self.user_id = user_id or str(account.get("user_id", "local"))
        self.settings = SyncSettings.from_config(config.merged)
        self.store_dir = config.resolve_path(str(storage_cfg.get("directory", "state/users")))
        self.media_dir = config.resolve_path(str(storage_cfg.get("media_dir", "media")))

        self.store = LocalStore(FileKeyValueBackend(self.store_dir))
        self.remote = remote or build_remote_client(config)
        self.guard = SyncGuard()
        self.engine = SyncEngine(
            self.store,
            self.remote,
            media_dir=self.media_dir,
            settings=self.settings,
            guard=self.guard,
        )
        self.coordinator = SyncCoordinator(
            self.user_id,
            self.store,
            self.engine,
            settings=self.settings,
            default_profile_name=str(account.get("display_name") or DEFAULT_PROFILE_NAME),
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop thread, load state and honour ``sync.auto_sync``."""
        if self.running:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="travelog-runtime",
        )
        self._thread.start()
        self.call(self.coordinator.load())
        if self.settings.auto_sync:
            self.call(self.coordinator.enable_auto_sync(True))
        logger.info("Runtime started for %s", self.user_id, extra={"user_id": self.user_id})

    def call(self, coro: Awaitable[T], timeout: float = CALL_TIMEOUT) -> T:
        """Run ``coro`` on the runtime loop and block for its result."""
        if self._loop is None or not self.running:
            raise RuntimeError("Journal runtime is not started")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def stop(self) -> None:
        if not self.running or self._loop is None:
            return
        try:
            self.call(self.coordinator.close())
            self.call(self.remote.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread is not None:
                self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("Runtime stopped")

    def describe(self) -> dict:
        return {
            "user_id": self.user_id,
            "store_dir": str(self.store_dir),
            "media_dir": str(self.media_dir),
            "remote": type(self.remote).__name__,
            "conflict_strategy": self.settings.conflict_strategy,
            "auto_sync": self.coordinator.auto_sync_enabled,
        }

    def _run_loop(self) -> None:
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()


__all__ = ["JournalRuntime"]
