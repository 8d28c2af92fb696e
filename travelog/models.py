"""Versioned journal records and their remote document shapes."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_PROFILE_NAME = "Voyageur"
REMOTE_URL_PREFIXES = ("http://", "https://")


class SyncStatus(str, Enum):
    """Sync lifecycle state of a record. Exactly one holds at a time."""
    SYNCED = "synced"
    PENDING = "pending"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    CONFLICT = "conflict"
    ERROR = "error"
    PENDING_DELETE = "pendingDelete"  # deleted locally, remote delete not yet confirmed


# A transfer status that survives into stored data means the transfer was cut
# short; the record is retried like any other unconfirmed edit.
TRANSFER_STATUSES = frozenset({SyncStatus.UPLOADING, SyncStatus.DOWNLOADING})
DIRTY_STATUSES = frozenset({SyncStatus.PENDING, SyncStatus.ERROR}) | TRANSFER_STATUSES


def now_millis() -> int:
    """Current wall clock as integer epoch milliseconds."""
    return int(time.time() * 1000)


def date_iso_for(millis: int) -> str:
    """Calendar bucketing key (UTC date) for an epoch-millis instant."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date().isoformat()


def generate_photo_id(now: Optional[int] = None) -> str:
    stamp = now if now is not None else now_millis()
    return f"local_{stamp}_{secrets.token_hex(5)[:9]}"


def is_local_uri(uri: Optional[str]) -> bool:
    """True when the uri points at a file on this device rather than a blob URL."""
    if not uri:
        return False
    return not uri.lower().startswith(REMOTE_URL_PREFIXES)


@dataclass
class Record:
    """Sync metadata shared by every journal record."""

    id: str
    version: int = 1
    last_modified: int = 0
    sync_status: SyncStatus = SyncStatus.PENDING

    @property
    def is_dirty(self) -> bool:
        """Local edits not yet confirmed by the remote store."""
        return self.sync_status in DIRTY_STATUSES

    @property
    def in_conflict(self) -> bool:
        return self.sync_status is SyncStatus.CONFLICT

    def touch(self, now: Optional[int] = None) -> None:
        """Record a local mutation: version and last_modified both strictly increase."""
        stamp = now if now is not None else now_millis()
        self.version += 1
        self.last_modified = max(stamp, self.last_modified + 1)
        self.sync_status = SyncStatus.PENDING

    def _meta_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "lastModified": self.last_modified,
            "syncStatus": self.sync_status.value,
        }


@dataclass
class Photo(Record):
    """A journal photo. ``uri`` always names the local copy of the image."""

    uri: str = ""
    timestamp: int = 0
    date_iso: str = ""
    location_name: Optional[str] = None
    title: Optional[str] = None
    note: Optional[str] = None
    server_id: Optional[str] = None
    needs_upload: bool = False
    remote_uri: Optional[str] = None
    # lastModified of the edit whose image the local copy holds
    blob_revision: int = 0
    # set once an upload was tried; the remote may hold a copy even if it failed
    push_attempted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = self._meta_dict()
        result.update({
            "uri": self.uri,
            "timestamp": self.timestamp,
            "dateISO": self.date_iso,
            "locationName": self.location_name,
            "title": self.title,
            "note": self.note,
            "serverId": self.server_id,
            "needsUpload": self.needs_upload,
            "remoteUri": self.remote_uri,
            "blobRevision": self.blob_revision,
            "pushAttempted": self.push_attempted,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Photo":
        timestamp = int(data.get("timestamp") or 0)
        return cls(
            id=str(data["id"]),
            version=int(data.get("version", 1)),
            last_modified=int(data.get("lastModified", timestamp)),
            sync_status=SyncStatus(data.get("syncStatus", SyncStatus.SYNCED.value)),
            uri=str(data.get("uri") or ""),
            timestamp=timestamp,
            date_iso=str(data.get("dateISO") or date_iso_for(timestamp)),
            location_name=data.get("locationName"),
            title=data.get("title"),
            note=data.get("note"),
            server_id=data.get("serverId"),
            needs_upload=bool(data.get("needsUpload", False)),
            remote_uri=data.get("remoteUri"),
            blob_revision=int(data.get("blobRevision") or 0),
            push_attempted=bool(data.get("pushAttempted", False)),
        )


@dataclass
class Profile(Record):
    """Per-user profile singleton; ``id`` is the owning user id."""

    name: str = DEFAULT_PROFILE_NAME
    avatar_uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = self._meta_dict()
        result.update({"name": self.name, "avatarUri": self.avatar_uri})
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], user_id: str = "") -> "Profile":
        return cls(
            id=str(data.get("id") or user_id),
            version=int(data.get("version", 1)),
            last_modified=int(data.get("lastModified", 0)),
            sync_status=SyncStatus(data.get("syncStatus", SyncStatus.SYNCED.value)),
            name=str(data.get("name") or DEFAULT_PROFILE_NAME),
            avatar_uri=data.get("avatarUri"),
        )


def create_photo(
    local_uri: str,
    location_name: Optional[str] = None,
    *,
    title: Optional[str] = None,
    note: Optional[str] = None,
    now: Optional[int] = None,
) -> Photo:
    """Build a freshly captured photo, pending its first upload."""
    stamp = now if now is not None else now_millis()
    return Photo(
        id=generate_photo_id(stamp),
        version=1,
        last_modified=stamp,
        sync_status=SyncStatus.PENDING,
        uri=local_uri,
        timestamp=stamp,
        date_iso=date_iso_for(stamp),
        location_name=location_name,
        title=title,
        note=note,
        needs_upload=True,
    )


def create_initial_profile(
    name: str = DEFAULT_PROFILE_NAME,
    *,
    user_id: str = "",
    now: Optional[int] = None,
) -> Profile:
    stamp = now if now is not None else now_millis()
    return Profile(
        id=user_id,
        version=1,
        last_modified=stamp,
        sync_status=SyncStatus.PENDING,
        name=name,
        avatar_uri=None,
    )


@dataclass
class RemotePhotoRecord:
    """Photo document as held by the remote store."""

    id: str
    user_id: str
    uri: str
    timestamp: int
    date_iso: str
    version: int
    last_modified: int
    location_name: Optional[str] = None
    title: Optional[str] = None
    note: Optional[str] = None
    blob_revision: int = 0
    updated_at: int = field(default_factory=now_millis)

    @classmethod
    def from_photo(
        cls,
        photo: Photo,
        user_id: str,
        uri: Optional[str] = None,
    ) -> "RemotePhotoRecord":
        return cls(
            id=photo.id,
            user_id=user_id,
            uri=uri if uri is not None else (photo.remote_uri or photo.uri),
            timestamp=photo.timestamp,
            date_iso=photo.date_iso,
            version=photo.version,
            last_modified=photo.last_modified,
            location_name=photo.location_name,
            title=photo.title,
            note=photo.note,
            blob_revision=photo.blob_revision,
        )

    def to_photo(self, local_uri: str) -> Photo:
        """Materialize a synced local photo from this document."""
        return Photo(
            id=self.id,
            version=self.version,
            last_modified=self.last_modified,
            sync_status=SyncStatus.SYNCED,
            uri=local_uri,
            timestamp=self.timestamp,
            date_iso=self.date_iso,
            location_name=self.location_name,
            title=self.title,
            note=self.note,
            server_id=self.id,
            needs_upload=False,
            remote_uri=self.uri,
            blob_revision=self.blob_revision,
        )

    def apply_to(self, photo: Photo, local_uri: Optional[str] = None) -> Photo:
        """Overwrite a local photo with this document's content; never lowers version."""
        return replace(
            photo,
            version=max(photo.version, self.version),
            last_modified=self.last_modified,
            sync_status=SyncStatus.SYNCED,
            uri=local_uri if local_uri is not None else photo.uri,
            location_name=self.location_name,
            title=self.title,
            note=self.note,
            server_id=self.id,
            needs_upload=False,
            remote_uri=self.uri,
            blob_revision=self.blob_revision,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "uri": self.uri,
            "timestamp": self.timestamp,
            "dateISO": self.date_iso,
            "locationName": self.location_name,
            "title": self.title,
            "note": self.note,
            "version": self.version,
            "lastModified": self.last_modified,
            "blobRevision": self.blob_revision,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemotePhotoRecord":
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            uri=str(data.get("uri") or ""),
            timestamp=int(data.get("timestamp") or 0),
            date_iso=str(data.get("dateISO") or ""),
            version=int(data.get("version", 1)),
            last_modified=int(data.get("lastModified", 0)),
            location_name=data.get("locationName"),
            title=data.get("title"),
            note=data.get("note"),
            blob_revision=int(data.get("blobRevision") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )


@dataclass
class RemoteProfileRecord:
    """Profile document as held by the remote store, keyed by user id."""

    user_id: str
    name: str
    version: int
    last_modified: int
    avatar_uri: Optional[str] = None
    updated_at: int = field(default_factory=now_millis)

    @classmethod
    def from_profile(cls, profile: Profile, user_id: str) -> "RemoteProfileRecord":
        return cls(
            user_id=user_id,
            name=profile.name,
            version=profile.version,
            last_modified=profile.last_modified,
            avatar_uri=profile.avatar_uri,
        )

    def apply_to(self, profile: Profile) -> Profile:
        return replace(
            profile,
            version=max(profile.version, self.version),
            last_modified=self.last_modified,
            sync_status=SyncStatus.SYNCED,
            name=self.name,
            avatar_uri=self.avatar_uri,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "name": self.name,
            "avatarUri": self.avatar_uri,
            "version": self.version,
            "lastModified": self.last_modified,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteProfileRecord":
        return cls(
            user_id=str(data["userId"]),
            name=str(data.get("name") or DEFAULT_PROFILE_NAME),
            version=int(data.get("version", 1)),
            last_modified=int(data.get("lastModified", 0)),
            avatar_uri=data.get("avatarUri"),
            updated_at=int(data.get("updatedAt") or 0),
        )


__all__ = [
    "DEFAULT_PROFILE_NAME",
    "DIRTY_STATUSES",
    "TRANSFER_STATUSES",
    "SyncStatus",
    "Record",
    "Photo",
    "Profile",
    "RemotePhotoRecord",
    "RemoteProfileRecord",
    "create_photo",
    "create_initial_profile",
    "date_iso_for",
    "generate_photo_id",
    "is_local_uri",
    "now_millis",
]
