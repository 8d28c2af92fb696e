"""In-memory owner of a user's journal state.

The coordinator applies user mutations, persists them, and merges the
state reconciled by the sync engine back into memory. Listeners subscribe
to ``SyncState`` snapshots instead of sharing mutable state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from .errors import (
    NetworkUnavailableError,
    RecordInConflictError,
    RecordNotFoundError,
    SyncInProgressError,
)
from .models import (
    DEFAULT_PROFILE_NAME,
    Photo,
    Profile,
    SyncStatus,
    create_initial_profile,
    create_photo,
    now_millis,
)
from .storage import LocalStore
from .sync.conflict import ConflictStrategy
from .sync.engine import SyncEngine, SyncOutcome, SyncResult, SyncSettings

logger = logging.getLogger("travelog.coordinator")

PHOTO_EDITABLE_FIELDS = frozenset({"title", "note", "location_name", "uri"})
PROFILE_EDITABLE_FIELDS = frozenset({"name", "avatar_uri"})
PROFILE_RECORD_ID = "profile"

Listener = Callable[["SyncState"], None]
Mark = Tuple[int, SyncStatus]
T = TypeVar("T")


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the sync status shown to the user."""

    is_online: bool = True
    is_syncing: bool = False
    last_sync: int = 0
    progress: str = ""
    pending_count: int = 0
    conflict_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "last_sync": self.last_sync,
            "progress": self.progress,
            "pending_count": self.pending_count,
            "conflict_count": self.conflict_count,
        }


class SyncCoordinator:
    """Owns the photos and profile of one signed-in user."""

    def __init__(
        self,
        user_id: str,
        store: LocalStore,
        engine: SyncEngine,
        *,
        settings: Optional[SyncSettings] = None,
        default_profile_name: str = DEFAULT_PROFILE_NAME,
    ):
        self.user_id = user_id
        self.store = store
        self.engine = engine
        self.settings = settings or engine.settings
        self.default_profile_name = default_profile_name

        self._photos: List[Photo] = []
        self._profile: Profile = create_initial_profile(default_profile_name, user_id=user_id)
        self._is_online = True
        self._is_syncing = False
        self._last_sync = 0
        self._progress = ""
        self._listeners: List[Listener] = []
        self._auto_task: Optional[asyncio.Task] = None

        if engine.progress_callback is None:
            engine.progress_callback = self._on_progress

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load persisted state, migrating pre-account data first."""
        await self.store.migrate_legacy_data(self.user_id)
        self._photos = await self.store.load_photos(self.user_id)
        self._profile = await self.store.load_profile(self.user_id, self.default_profile_name)
        self._last_sync = await self.store.load_last_sync(self.user_id)
        logger.info(
            "Loaded %d photos for %s",
            len(self._photos),
            self.user_id,
            extra={"user_id": self.user_id},
        )
        self._publish()

    @property
    def photos(self) -> List[Photo]:
        """Visible photos, newest first; pending deletions are hidden."""
        return [p for p in self._photos if p.sync_status is not SyncStatus.PENDING_DELETE]

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def auto_sync_enabled(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    @property
    def state(self) -> SyncState:
        pending = sum(
            1
            for p in self._photos
            if p.is_dirty or p.sync_status is SyncStatus.PENDING_DELETE
        )
        conflicts = sum(1 for p in self._photos if p.in_conflict)
        if self._profile.is_dirty:
            pending += 1
        if self._profile.in_conflict:
            conflicts += 1
        return SyncState(
            is_online=self._is_online,
            is_syncing=self._is_syncing,
            last_sync=self._last_sync,
            progress=self._progress,
            pending_count=pending,
            conflict_count=conflicts,
        )

    def get_record(self, photo_id: str) -> Photo:
        for photo in self._photos:
            if photo.id == photo_id and photo.sync_status is not SyncStatus.PENDING_DELETE:
                return photo
        raise RecordNotFoundError(photo_id)

    def conflicts(self) -> List[Photo]:
        return [p for p in self._photos if p.in_conflict]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_record(
        self,
        local_uri: str,
        location_name: Optional[str] = None,
        *,
        title: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Photo:
        photo = create_photo(local_uri, location_name, title=title, note=note)
        self._photos.insert(0, photo)
        await self._save_photos()
        logger.info(
            "Added photo %s",
            photo.id,
            extra={"user_id": self.user_id, "record_id": photo.id},
        )
        self._publish()
        return photo

    async def update_record(self, photo_id: str, **changes: Any) -> Photo:
        """Edit a photo's user fields; the record becomes pending."""
        unknown = set(changes) - PHOTO_EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        photo = self.get_record(photo_id)
        if photo.in_conflict:
            raise RecordInConflictError(photo_id)

        for name, value in changes.items():
            setattr(photo, name, value)
        if "uri" in changes:
            photo.needs_upload = True
        photo.touch()
        await self._save_photos()
        self._publish()
        return photo

    async def remove_record(self, photo_id: str) -> bool:
        """Delete a photo.

        Returns True when the record is gone everywhere. When the remote
        delete cannot be confirmed, or a sync pass is running, the record is
        hidden as ``pendingDelete`` and the next sync deletes it; False is
        returned.
        """
        photo = self.get_record(photo_id)
        if photo.in_conflict:
            raise RecordInConflictError(photo_id)

        if self.engine.guard.is_active(self.user_id):
            confirmed = False  # the running pass may be uploading this record
        elif photo.server_id is None and not photo.push_attempted:
            confirmed = True  # never left this device
        else:
            confirmed = await self.engine.delete_photo(self.user_id, photo)

        if confirmed:
            self._photos = [p for p in self._photos if p.id != photo_id]
        else:
            photo.sync_status = SyncStatus.PENDING_DELETE
        await self._save_photos()
        self._publish()
        return confirmed

    async def set_profile(self, **changes: Any) -> Profile:
        unknown = set(changes) - PROFILE_EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if self._profile.in_conflict:
            raise RecordInConflictError(self._profile.id or self.user_id)

        for name, value in changes.items():
            setattr(self._profile, name, value)
        self._profile.touch()
        await self.store.save_profile(self.user_id, self._profile)
        self._publish()
        return self._profile

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_now(self) -> SyncResult:
        """Run a sync pass and merge its outcome into memory."""
        if self.engine.guard.is_active(self.user_id):
            raise SyncInProgressError(self.user_id)

        photo_marks = {p.id: _mark(p) for p in self._photos}
        profile_mark = _mark(self._profile)

        self._is_syncing = True
        self._progress = "Starting"
        self._publish()
        try:
            outcome = await self.engine.synchronize(self.user_id, self._photos, self._profile)
        except NetworkUnavailableError:
            self._is_online = False
            raise
        finally:
            self._is_syncing = False
            self._progress = ""
            self._publish()

        self._merge(outcome, photo_marks, profile_mark)
        self._is_online = True
        self._last_sync = now_millis()
        await self._save_photos()
        await self.store.save_profile(self.user_id, self._profile)
        self._publish()
        return outcome.result

    async def resolve_conflict(
        self,
        record_id: str,
        strategy: Union[str, ConflictStrategy],
    ) -> Union[Photo, Profile]:
        """Settle one conflicting record with ``keepLocal`` or ``keepServer``.

        ``record_id`` is a photo id, or ``profile`` (or the user id) for the
        profile.
        """
        if record_id in (PROFILE_RECORD_ID, self.user_id) and not self._has_photo(record_id):
            return await self.resolve_profile_conflict(strategy)

        photo = self.get_record(record_id)
        if not photo.in_conflict:
            raise ValueError(f"Record '{record_id}' is not in conflict")

        resolved = await self._resolving(self.engine.resolve_conflict(self.user_id, photo, strategy))
        self._photos = [resolved if p.id == record_id else p for p in self._photos]
        await self._save_photos()
        self._publish()
        return resolved

    async def resolve_profile_conflict(self, strategy: Union[str, ConflictStrategy]) -> Profile:
        if not self._profile.in_conflict:
            raise ValueError("Profile is not in conflict")

        resolved = await self._resolving(
            self.engine.resolve_profile_conflict(self.user_id, self._profile, strategy)
        )
        self._profile = resolved
        await self.store.save_profile(self.user_id, self._profile)
        self._publish()
        return resolved

    async def enable_auto_sync(self, enabled: bool) -> None:
        """Start or stop the periodic sync task on the running loop."""
        if enabled and not self.auto_sync_enabled:
            self._auto_task = asyncio.get_running_loop().create_task(self._auto_sync_loop())
            logger.info(
                "Auto-sync enabled every %s minutes",
                self.settings.interval_minutes,
                extra={"user_id": self.user_id},
            )
        elif not enabled and self._auto_task is not None:
            await self._cancel_auto_sync()
            logger.info("Auto-sync disabled", extra={"user_id": self.user_id})

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def close(self) -> None:
        await self._cancel_auto_sync()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _merge(
        self,
        outcome: SyncOutcome,
        photo_marks: Dict[str, Mark],
        profile_mark: Mark,
    ) -> None:
        live = {p.id: p for p in self._photos}
        merged: List[Photo] = []
        seen = set()
        for reconciled in outcome.photos:
            seen.add(reconciled.id)
            current = live.get(reconciled.id)
            if reconciled.id in photo_marks:
                if current is None:
                    continue  # removed while the pass ran
                if _mark(current) != photo_marks[reconciled.id]:
                    # edited while the pass ran; keep what the remote now knows of it
                    current.server_id = current.server_id or reconciled.server_id
                    current.push_attempted = current.push_attempted or reconciled.push_attempted
                    merged.append(current)
                    continue
            merged.append(reconciled)

        added = [p for p in self._photos if p.id not in photo_marks and p.id not in seen]
        self._photos = added + merged

        if _mark(self._profile) == profile_mark:
            self._profile = outcome.profile

    def _has_photo(self, photo_id: str) -> bool:
        return any(p.id == photo_id for p in self._photos)

    async def _resolving(self, resolution: Awaitable[T]) -> T:
        try:
            return await resolution
        except NetworkUnavailableError:
            self._is_online = False
            self._publish()
            raise

    async def _save_photos(self) -> None:
        if not await self.store.save_photos(self.user_id, self._photos):
            logger.warning(
                "Photos for %s kept in memory only",
                self.user_id,
                extra={"user_id": self.user_id},
            )

    async def _auto_sync_loop(self) -> None:
        interval = self.settings.interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            await self._auto_sync_tick()

    async def _auto_sync_tick(self) -> None:
        if self.engine.guard.is_active(self.user_id):
            return
        try:
            result = await self.sync_now()
        except SyncInProgressError:
            return
        except NetworkUnavailableError as exc:
            logger.info("Auto-sync skipped: %s", exc, extra={"user_id": self.user_id})
            return
        except Exception:
            logger.exception("Auto-sync failed", extra={"user_id": self.user_id})
            return
        logger.info("Auto-sync: %s", result.summary(), extra={"user_id": self.user_id})

    async def _cancel_auto_sync(self) -> None:
        task, self._auto_task = self._auto_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _on_progress(self, message: str, step: int, total: int) -> None:
        self._progress = f"{message} ({step}/{total})"
        self._publish()

    def _publish(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")


def _mark(record: Union[Photo, Profile]) -> Mark:
    return (record.version, record.sync_status)


__all__ = [
    "SyncCoordinator",
    "SyncState",
    "PHOTO_EDITABLE_FIELDS",
    "PROFILE_EDITABLE_FIELDS",
    "PROFILE_RECORD_ID",
]
