"""Contract the sync engine requires from a remote document + blob store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..models import RemotePhotoRecord, RemoteProfileRecord

PHOTO_COLLECTION = "photos"
PROFILE_COLLECTION = "profiles"


def blob_path_for(user_id: str, photo_id: str) -> str:
    """Deterministic blob location of a photo's image."""
    return f"photos/{user_id}/{photo_id}"


def local_file(uri: str) -> Path:
    """Filesystem path of a local uri (plain path or file:// URL)."""
    if uri.startswith("file://"):
        return Path(uri[len("file://"):])
    return Path(uri)


class RemoteClient(ABC):
    """Remote store operations.

    Every method may raise ``RemoteNetworkError`` (transport) or
    ``RemoteLogicError`` (rejected request); callers scope those failures to
    the record being processed.
    """

    @abstractmethod
    async def check_connectivity(self) -> bool:
        ...

    @abstractmethod
    async def list_photos_for_user(self, user_id: str) -> List[RemotePhotoRecord]:
        """Return the user's photo documents, most recently updated first."""

    @abstractmethod
    async def get_photo(self, photo_id: str) -> Optional[RemotePhotoRecord]:
        ...

    @abstractmethod
    async def put_photo(self, record: RemotePhotoRecord) -> None:
        """Upsert a photo document keyed by its id."""

    @abstractmethod
    async def delete_photo(self, photo_id: str) -> None:
        ...

    @abstractmethod
    async def upload_blob(self, local_uri: str, path: str) -> str:
        """Store a local file at ``path`` and return its canonical URL."""

    @abstractmethod
    async def download_blob(self, remote_url: str, dest_path: str) -> str:
        """Fetch a blob into ``dest_path`` and return the local path."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[RemoteProfileRecord]:
        ...

    @abstractmethod
    async def put_profile(self, record: RemoteProfileRecord) -> None:
        ...

    async def close(self) -> None:
        """Release held resources."""


__all__ = ["RemoteClient", "blob_path_for", "local_file", "PHOTO_COLLECTION", "PROFILE_COLLECTION"]
