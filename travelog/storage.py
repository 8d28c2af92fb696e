"""Per-user local persistence of the journal collections.

Values are JSON documents stored under user-namespaced keys so several
accounts can share a device. Reads never raise: a missing or corrupt entry
yields an empty collection or a default profile so startup is never blocked.
Writes log and report failure through their return value instead of raising;
the in-memory state held by the coordinator stays authoritative until the
next successful write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from .models import DEFAULT_PROFILE_NAME, Photo, Profile, create_initial_profile

logger = logging.getLogger("travelog.storage")

LEGACY_PHOTOS_KEY = "journal_photos"
LEGACY_PROFILE_KEY = "journal_profile"


def photos_key(user_id: str) -> str:
    return f"journal_photos_{user_id}"


def profile_key(user_id: str) -> str:
    return f"journal_profile_{user_id}"


def last_sync_key(user_id: str, kind: str) -> str:
    return f"last_sync_{kind}_{user_id}"


class KeyValueBackend(ABC):
    """Blocking string key-value persistence."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...


class MemoryKeyValueBackend(KeyValueBackend):
    """Dict-backed storage for ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class FileKeyValueBackend(KeyValueBackend):
    """One JSON file per key inside a directory, replaced atomically."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class LocalStore:
    """Async facade over a key-value backend holding photos and profile per user."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend

    async def load_photos(self, user_id: str) -> List[Photo]:
        raw = await self._read_json(photos_key(user_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring photo collection for %s: not a list", user_id)
            return []

        photos: List[Photo] = []
        seen = set()
        for entry in raw:
            try:
                photo = Photo.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable photo record for %s: %s", user_id, exc)
                continue
            if photo.id in seen:
                logger.warning("Dropping duplicate photo id %s for %s", photo.id, user_id)
                continue
            seen.add(photo.id)
            photos.append(photo)
        return photos

    async def save_photos(self, user_id: str, photos: Sequence[Photo]) -> bool:
        return await self._write_json(photos_key(user_id), [p.to_dict() for p in photos])

    async def load_profile(
        self,
        user_id: str,
        default_name: str = DEFAULT_PROFILE_NAME,
    ) -> Profile:
        raw = await self._read_json(profile_key(user_id))
        if isinstance(raw, dict):
            try:
                return Profile.from_dict(raw, user_id=user_id)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Unreadable profile for %s, using default: %s", user_id, exc)
        elif raw is not None:
            logger.warning("Ignoring profile for %s: not a mapping", user_id)
        return create_initial_profile(default_name, user_id=user_id)

    async def save_profile(self, user_id: str, profile: Profile) -> bool:
        return await self._write_json(profile_key(user_id), profile.to_dict())

    async def load_last_sync(self, user_id: str, kind: str = "photos") -> int:
        raw = await self._read_json(last_sync_key(user_id, kind))
        if isinstance(raw, int):
            return raw
        return 0

    async def save_last_sync(self, user_id: str, millis: int, kind: str = "photos") -> bool:
        return await self._write_json(last_sync_key(user_id, kind), int(millis))

    async def migrate_legacy_data(self, user_id: str) -> bool:
        """Move collections saved before accounts existed into the user's namespace."""
        moved = False
        for legacy_key, target_key in (
            (LEGACY_PHOTOS_KEY, photos_key(user_id)),
            (LEGACY_PROFILE_KEY, profile_key(user_id)),
        ):
            try:
                value = await asyncio.to_thread(self.backend.get_item, legacy_key)
                if value is None:
                    continue
                await asyncio.to_thread(self.backend.set_item, target_key, value)
                await asyncio.to_thread(self.backend.remove_item, legacy_key)
                moved = True
                logger.info("Migrated legacy key %s to %s", legacy_key, target_key)
            except OSError as exc:
                logger.error("Failed to migrate legacy key %s: %s", legacy_key, exc)
        return moved

    async def _read_json(self, key: str) -> Any:
        try:
            payload = await asyncio.to_thread(self.backend.get_item, key)
        except OSError as exc:
            logger.warning("Failed to read %s: %s", key, exc)
            return None
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            logger.warning("Corrupt JSON under %s: %s", key, exc)
            return None

    async def _write_json(self, key: str, value: Any) -> bool:
        try:
            payload = json.dumps(value, ensure_ascii=False)
            await asyncio.to_thread(self.backend.set_item, key, payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save %s: %s", key, exc)
            return False
        return True


__all__ = [
    "KeyValueBackend",
    "MemoryKeyValueBackend",
    "FileKeyValueBackend",
    "LocalStore",
    "photos_key",
    "profile_key",
    "last_sync_key",
]
