"""Offline-first reconciliation of a user's journal against the remote store."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, TypeVar, Union
from urllib.parse import urlparse

from ..errors import NetworkUnavailableError, RemoteError
from ..models import (
    Photo,
    Profile,
    RemotePhotoRecord,
    RemoteProfileRecord,
    SyncStatus,
    is_local_uri,
    now_millis,
)
from ..remote.base import RemoteClient, blob_path_for
from ..storage import LocalStore
from .conflict import ConflictAction, ConflictResolution, ConflictResolver, ConflictStrategy
from .guard import SyncGuard

logger = logging.getLogger("travelog.sync.engine")

DEFAULT_MEDIA_SUFFIX = ".jpg"
PHASE_COUNT = 6

T = TypeVar("T")

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class SyncSettings:
    """Settings for sync operations."""

    auto_sync: bool = False
    interval_minutes: float = 15.0
    conflict_strategy: str = ConflictStrategy.NEWEST_WINS.value
    max_concurrency: int = 4

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        return cls(
            auto_sync=bool(raw.get("auto_sync", False)),
            interval_minutes=float(raw.get("interval_minutes", 15)),
            conflict_strategy=str(raw.get("conflict_strategy", ConflictStrategy.NEWEST_WINS.value)),
            max_concurrency=max(1, int(raw.get("max_concurrency", 4))),
        )


@dataclass
class SyncResult:
    """Counters and messages of one sync pass."""

    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    conflicts_resolved: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
    profile_status: str = "unchanged"

    @property
    def is_clean(self) -> bool:
        """True when the pass found nothing to do."""
        return (
            self.uploaded == 0
            and self.downloaded == 0
            and self.conflicts == 0
            and self.conflicts_resolved == 0
            and self.deleted == 0
            and not self.errors
            and self.profile_status == "unchanged"
        )

    def summary(self) -> str:
        parts = [
            f"{self.uploaded} uploaded",
            f"{self.downloaded} downloaded",
            f"{self.conflicts} conflicts",
            f"{self.conflicts_resolved} resolved",
        ]
        if self.deleted:
            parts.append(f"{self.deleted} deleted")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "conflicts": self.conflicts,
            "conflicts_resolved": self.conflicts_resolved,
            "deleted": self.deleted,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
            "profile_status": self.profile_status,
        }


@dataclass
class SyncOutcome:
    """Reconciled state produced by a pass, ready to be merged by the caller."""

    result: SyncResult
    photos: List[Photo]
    profile: Profile
    removed_ids: List[str] = field(default_factory=list)


class SyncEngine:
    """Runs sync passes and single-record conflict resolutions.

    The engine never mutates the caller's records: it reconciles deep copies,
    persists them through the local store and hands them back in a
    ``SyncOutcome``.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        *,
        media_dir: Path,
        settings: Optional[SyncSettings] = None,
        guard: Optional[SyncGuard] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.store = store
        self.remote = remote
        self.media_dir = Path(media_dir)
        self.settings = settings or SyncSettings()
        self.guard = guard or SyncGuard()
        self.progress_callback = progress_callback
        self.resolver = ConflictResolver(ConflictStrategy(self.settings.conflict_strategy))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def synchronize(
        self,
        user_id: str,
        photos: Iterable[Photo],
        profile: Profile,
    ) -> SyncOutcome:
        """Run one full pass: deletions, upload, download, conflicts, profile.

        Raises ``SyncInProgressError`` when a pass for ``user_id`` is already
        running and ``NetworkUnavailableError`` when the remote store is
        unreachable; every other remote failure is scoped to its record and
        reported in ``SyncResult.errors``.
        """
        with self.guard.hold(user_id):
            started = time.monotonic()
            result = SyncResult()
            working: Dict[str, Photo] = {p.id: copy.deepcopy(p) for p in photos}
            working_profile = copy.deepcopy(profile)

            self._report("Checking connectivity", 1)
            await self._ensure_online(user_id)

            self._report("Confirming deletions", 2)
            removed_ids = await self._push_deletions(user_id, working, result)

            self._report("Uploading local changes", 3)
            failed_uploads = await self._upload_phase(user_id, working, result)

            self._report("Downloading remote changes", 4)
            fresh = await self._download_phase(user_id, working, failed_uploads, result)

            self._report("Resolving conflicts", 5)
            await self._resolve_phase(user_id, working, result)

            self._report("Syncing profile", 6)
            working_profile = await self._sync_profile(user_id, working_profile, result)

            reconciled = list(fresh) + list(working.values())
            await self._persist(user_id, reconciled, working_profile, result)

            result.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "Sync finished for %s: %s",
                user_id,
                result.summary(),
                extra={"user_id": user_id, "phase": "done"},
            )
            return SyncOutcome(
                result=result,
                photos=reconciled,
                profile=working_profile,
                removed_ids=removed_ids,
            )

    async def resolve_conflict(
        self,
        user_id: str,
        photo: Photo,
        strategy: Union[str, ConflictStrategy],
    ) -> Photo:
        """Force-push (``keepLocal``) or force-pull (``keepServer``) one record."""
        resolver = _choice_resolver(strategy)

        with self.guard.hold(user_id):
            await self._ensure_online(user_id)
            working = copy.deepcopy(photo)
            remote = await self.remote.get_photo(working.id)
            resolution = resolver.resolve(
                working.id,
                working.last_modified,
                remote.last_modified if remote else None,
            )
            updated = await self._apply_resolution(user_id, working, remote, resolution)
            logger.info(
                "Resolved %s by %s",
                working.id,
                resolution.action.value,
                extra={"user_id": user_id, "record_id": working.id, "phase": "resolve"},
            )
            return updated

    async def resolve_profile_conflict(
        self,
        user_id: str,
        profile: Profile,
        strategy: Union[str, ConflictStrategy],
    ) -> Profile:
        """Force-push (``keepLocal``) or force-pull (``keepServer``) the profile."""
        resolver = _choice_resolver(strategy)

        with self.guard.hold(user_id):
            await self._ensure_online(user_id)
            remote = await self.remote.get_profile(user_id)
            resolution = resolver.resolve(
                user_id,
                profile.last_modified,
                remote.last_modified if remote else None,
            )
            if resolution.action is ConflictAction.SKIP:
                return profile
            if resolution.action is ConflictAction.PULL and remote is not None:
                updated = remote.apply_to(profile)
            else:
                updated = await self._push_profile(user_id, copy.deepcopy(profile), remote)
            logger.info(
                "Resolved profile by %s",
                resolution.action.value,
                extra={"user_id": user_id, "phase": "resolve"},
            )
            return updated

    async def delete_photo(self, user_id: str, photo: Photo) -> bool:
        """Delete a record remotely; False when the remote store did not confirm."""
        try:
            await self.remote.delete_photo(photo.id)
        except RemoteError as exc:
            logger.warning(
                "Remote delete of %s failed: %s",
                photo.id,
                exc,
                extra={"user_id": user_id, "record_id": photo.id, "phase": "delete"},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _ensure_online(self, user_id: str) -> None:
        try:
            online = await self.remote.check_connectivity()
        except RemoteError as exc:
            raise NetworkUnavailableError(f"Remote store unreachable: {exc}") from exc
        if not online:
            logger.info("Skipping sync for %s: offline", user_id, extra={"user_id": user_id})
            raise NetworkUnavailableError("Remote store unreachable")

    async def _push_deletions(
        self,
        user_id: str,
        working: Dict[str, Photo],
        result: SyncResult,
    ) -> List[str]:
        doomed = [p for p in working.values() if p.sync_status is SyncStatus.PENDING_DELETE]
        removed: List[str] = []

        async def delete_one(photo: Photo) -> None:
            if await self.delete_photo(user_id, photo):
                removed.append(photo.id)
            else:
                result.errors.append(f"Delete of {photo.id} not confirmed; will retry")

        await self._bounded(doomed, delete_one)
        for photo_id in removed:
            working.pop(photo_id, None)
        result.deleted = len(removed)
        return removed

    async def _upload_phase(
        self,
        user_id: str,
        working: Dict[str, Photo],
        result: SyncResult,
    ) -> Set[str]:
        """Push dirty records; returns ids whose upload failed in this pass."""
        dirty = [p for p in working.values() if p.is_dirty]
        failed: Set[str] = set()
        if not dirty:
            return failed

        try:
            listing = await self.remote.list_photos_for_user(user_id)
        except RemoteError as exc:
            message = f"Remote listing failed before upload: {exc}"
            logger.warning(message, extra={"user_id": user_id, "phase": "upload"})
            result.errors.append(message)
            return failed
        remote_index = {record.id: record for record in listing}

        async def upload_one(photo: Photo) -> None:
            counterpart = remote_index.get(photo.id)
            if counterpart is not None and counterpart.last_modified > photo.last_modified:
                working[photo.id] = replace(photo, sync_status=SyncStatus.CONFLICT)
                result.conflicts += 1
                logger.info(
                    "Remote copy of %s is newer; marked conflict",
                    photo.id,
                    extra={"user_id": user_id, "record_id": photo.id, "phase": "upload"},
                )
                return
            attempt = replace(photo, push_attempted=True)
            try:
                working[photo.id] = await self._push_photo(user_id, attempt)
            except (RemoteError, OSError) as exc:
                failed.add(photo.id)
                working[photo.id] = replace(attempt, sync_status=SyncStatus.ERROR)
                result.errors.append(f"Upload of {photo.id} failed: {exc}")
                logger.warning(
                    "Upload of %s failed: %s",
                    photo.id,
                    exc,
                    extra={"user_id": user_id, "record_id": photo.id, "phase": "upload"},
                )
                return
            result.uploaded += 1

        await self._bounded(dirty, upload_one)
        return failed

    async def _download_phase(
        self,
        user_id: str,
        working: Dict[str, Photo],
        failed_uploads: Set[str],
        result: SyncResult,
    ) -> List[Photo]:
        """Pull remote changes; returns records that did not exist locally."""
        try:
            listing = await self.remote.list_photos_for_user(user_id)
        except RemoteError as exc:
            message = f"Remote listing failed, download skipped: {exc}"
            logger.warning(message, extra={"user_id": user_id, "phase": "download"})
            result.errors.append(message)
            return []

        fresh: Dict[str, Photo] = {}
        seen: Set[str] = set()
        records: List[RemotePhotoRecord] = []
        for record in listing:
            if record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)

        async def download_one(record: RemotePhotoRecord) -> None:
            local = working.get(record.id)
            try:
                if local is None:
                    fresh[record.id] = await self._materialize(user_id, record)
                    result.downloaded += 1
                elif local.sync_status is SyncStatus.PENDING_DELETE or local.id in failed_uploads:
                    return
                elif local.is_dirty and record.last_modified != local.last_modified:
                    working[local.id] = replace(local, sync_status=SyncStatus.CONFLICT)
                    result.conflicts += 1
                elif (
                    local.sync_status is SyncStatus.SYNCED
                    and record.last_modified > local.last_modified
                ):
                    working[local.id] = await self._pull_photo(user_id, local, record)
                    result.downloaded += 1
            except (RemoteError, OSError) as exc:
                result.errors.append(f"Download of {record.id} failed: {exc}")
                logger.warning(
                    "Download of %s failed: %s",
                    record.id,
                    exc,
                    extra={"user_id": user_id, "record_id": record.id, "phase": "download"},
                )

        await self._bounded(records, download_one)
        # keep the listing order (most recently updated first) for new records
        return [fresh[r.id] for r in records if r.id in fresh]

    async def _resolve_phase(
        self,
        user_id: str,
        working: Dict[str, Photo],
        result: SyncResult,
    ) -> None:
        if self.resolver.strategy is ConflictStrategy.MANUAL:
            return
        conflicted = [p for p in working.values() if p.in_conflict]

        async def resolve_one(photo: Photo) -> None:
            try:
                remote = await self.remote.get_photo(photo.id)
                resolution = self.resolver.resolve(
                    photo.id,
                    photo.last_modified,
                    remote.last_modified if remote else None,
                )
                if resolution.action is ConflictAction.SKIP:
                    return
                working[photo.id] = await self._apply_resolution(user_id, photo, remote, resolution)
            except (RemoteError, OSError) as exc:
                result.errors.append(f"Conflict resolution of {photo.id} failed: {exc}")
                logger.warning(
                    "Conflict resolution of %s failed: %s",
                    photo.id,
                    exc,
                    extra={"user_id": user_id, "record_id": photo.id, "phase": "resolve"},
                )
                return
            result.conflicts_resolved += 1

        await self._bounded(conflicted, resolve_one)

    async def _sync_profile(
        self,
        user_id: str,
        profile: Profile,
        result: SyncResult,
    ) -> Profile:
        try:
            remote = await self.remote.get_profile(user_id)
            if profile.is_dirty and remote is not None and remote.last_modified > profile.last_modified:
                profile = replace(profile, sync_status=SyncStatus.CONFLICT)
                result.profile_status = "conflict"

            if profile.in_conflict:
                if self.resolver.strategy is ConflictStrategy.MANUAL:
                    result.profile_status = "conflict"
                    return profile
                resolution = self.resolver.resolve(
                    user_id,
                    profile.last_modified,
                    remote.last_modified if remote else None,
                )
                if resolution.action is ConflictAction.PULL and remote is not None:
                    profile = remote.apply_to(profile)
                else:
                    profile = await self._push_profile(user_id, profile, remote)
                result.profile_status = "resolved"
            elif profile.is_dirty or (profile.sync_status is SyncStatus.SYNCED and remote is None):
                profile = await self._push_profile(user_id, profile, None)
                result.profile_status = "pushed"
            elif remote is not None and remote.last_modified > profile.last_modified:
                profile = remote.apply_to(profile)
                result.profile_status = "pulled"
        except RemoteError as exc:
            if profile.is_dirty:
                profile = replace(profile, sync_status=SyncStatus.ERROR)
            result.profile_status = "error"
            result.errors.append(f"Profile sync failed: {exc}")
            logger.warning(
                "Profile sync failed: %s",
                exc,
                extra={"user_id": user_id, "phase": "profile"},
            )
        return profile

    async def _persist(
        self,
        user_id: str,
        photos: List[Photo],
        profile: Profile,
        result: SyncResult,
    ) -> None:
        if not await self.store.save_photos(user_id, photos):
            result.errors.append("Failed to persist reconciled photos")
        if not await self.store.save_profile(user_id, profile):
            result.errors.append("Failed to persist reconciled profile")
        await self.store.save_last_sync(user_id, now_millis())

    # ------------------------------------------------------------------
    # Record transfers
    # ------------------------------------------------------------------

    async def _push_photo(self, user_id: str, photo: Photo) -> Photo:
        """Upload blob (when needed) then metadata; returns the synced copy."""
        remote_url = photo.remote_uri
        if is_local_uri(photo.uri) and (photo.needs_upload or not remote_url):
            remote_url = await self.remote.upload_blob(photo.uri, blob_path_for(user_id, photo.id))
            # the blob path is fixed per photo, so other devices compare revisions
            photo = replace(photo, blob_revision=photo.last_modified)
        record = RemotePhotoRecord.from_photo(photo, user_id, uri=remote_url or photo.uri)
        await self.remote.put_photo(record)
        return replace(
            photo,
            sync_status=SyncStatus.SYNCED,
            needs_upload=False,
            server_id=photo.id,
            remote_uri=record.uri,
        )

    async def _pull_photo(self, user_id: str, photo: Photo, record: RemotePhotoRecord) -> Photo:
        """Overwrite a local record with the remote one; fetch the blob if it was replaced."""
        local_uri = photo.uri
        replaced = record.uri != photo.remote_uri or record.blob_revision != photo.blob_revision
        if record.uri and (replaced or not is_local_uri(photo.uri)):
            local_uri = await self.remote.download_blob(
                record.uri,
                str(self._media_path(user_id, record)),
            )
        return record.apply_to(photo, local_uri=local_uri)

    async def _materialize(self, user_id: str, record: RemotePhotoRecord) -> Photo:
        if not record.uri:
            raise OSError(f"Remote record {record.id} has no image")
        local_uri = await self.remote.download_blob(
            record.uri,
            str(self._media_path(user_id, record)),
        )
        return record.to_photo(local_uri)

    async def _apply_resolution(
        self,
        user_id: str,
        photo: Photo,
        remote: Optional[RemotePhotoRecord],
        resolution: ConflictResolution,
    ) -> Photo:
        if resolution.action is ConflictAction.PULL and remote is not None:
            return await self._pull_photo(user_id, photo, remote)
        if resolution.action is ConflictAction.SKIP:
            return photo
        # A forced push must dominate the remote copy so other devices pull it.
        if remote is not None:
            last_modified = photo.last_modified
            if remote.last_modified > last_modified:
                last_modified = remote.last_modified + 1
            photo = replace(
                photo,
                version=max(photo.version, remote.version),
                last_modified=last_modified,
            )
        return await self._push_photo(user_id, photo)

    async def _push_profile(
        self,
        user_id: str,
        profile: Profile,
        remote: Optional[RemoteProfileRecord],
    ) -> Profile:
        if remote is not None and remote.last_modified > profile.last_modified:
            profile = replace(
                profile,
                version=max(profile.version, remote.version),
                last_modified=remote.last_modified + 1,
            )
        await self.remote.put_profile(RemoteProfileRecord.from_profile(profile, user_id))
        return replace(profile, id=user_id, sync_status=SyncStatus.SYNCED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _media_path(self, user_id: str, record: RemotePhotoRecord) -> Path:
        suffix = Path(urlparse(record.uri).path).suffix or DEFAULT_MEDIA_SUFFIX
        return self.media_dir / user_id / f"{record.id}{suffix}"

    async def _bounded(
        self,
        items: List[T],
        fn: Callable[[T], Awaitable[None]],
    ) -> None:
        """Run ``fn`` over ``items`` with at most ``max_concurrency`` in flight."""
        if not items:
            return
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrency))

        async def run(item: T) -> None:
            async with semaphore:
                await fn(item)

        outcomes = await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    def _report(self, message: str, step: int) -> None:
        if self.progress_callback:
            self.progress_callback(message, step, PHASE_COUNT)


def _choice_resolver(strategy: Union[str, ConflictStrategy]) -> ConflictResolver:
    if isinstance(strategy, ConflictStrategy):
        return ConflictResolver(strategy)
    return ConflictResolver.for_choice(strategy)


__all__ = [
    "SyncEngine",
    "SyncSettings",
    "SyncResult",
    "SyncOutcome",
    "ProgressCallback",
]
