"""In-process remote client over a DocumentStore (shared folder or NAS backend)."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sqlite3
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

from ..errors import RemoteLogicError, RemoteNetworkError
from ..models import RemotePhotoRecord, RemoteProfileRecord
from .base import PHOTO_COLLECTION, PROFILE_COLLECTION, RemoteClient, blob_path_for, local_file
from .store import DocumentStore

logger = logging.getLogger("travelog.remote.local")

BLOB_URL_PREFIX = "store://"

T = TypeVar("T")


def blob_url(path: str) -> str:
    return f"{BLOB_URL_PREFIX}{path}"


def blob_path_from_url(url: str) -> str:
    if not url.startswith(BLOB_URL_PREFIX):
        raise RemoteLogicError(f"Not a store blob URL: {url}")
    return url[len(BLOB_URL_PREFIX):]


class StoreRemoteClient(RemoteClient):
    """Remote client that talks to a DocumentStore directly from worker threads."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except (sqlite3.Error, OSError) as exc:
            raise RemoteNetworkError(f"Document store unavailable: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteLogicError(f"Document store rejected request: {exc}") from exc

    async def check_connectivity(self) -> bool:
        try:
            await self._call(self.store.list_documents, PROFILE_COLLECTION, "")
        except RemoteNetworkError as exc:
            logger.info("Document store unreachable: %s", exc)
            return False
        return True

    async def list_photos_for_user(self, user_id: str) -> List[RemotePhotoRecord]:
        docs = await self._call(self.store.list_documents, PHOTO_COLLECTION, user_id)
        return [RemotePhotoRecord.from_dict(doc) for doc in docs]

    async def get_photo(self, photo_id: str) -> Optional[RemotePhotoRecord]:
        doc = await self._call(self.store.get_document, PHOTO_COLLECTION, photo_id)
        return RemotePhotoRecord.from_dict(doc) if doc else None

    async def put_photo(self, record: RemotePhotoRecord) -> None:
        stored = await self._call(
            self.store.put_document,
            PHOTO_COLLECTION,
            record.id,
            record.user_id,
            record.to_dict(),
        )
        record.updated_at = stored["updatedAt"]

    async def delete_photo(self, photo_id: str) -> None:
        doc = await self._call(self.store.get_document, PHOTO_COLLECTION, photo_id)
        if doc is None:
            return
        await self._call(self.store.delete_document, PHOTO_COLLECTION, photo_id)
        await self._call(self.store.delete_blob, blob_path_for(doc["userId"], photo_id))

    async def upload_blob(self, local_uri: str, path: str) -> str:
        source = local_file(local_uri)
        data = await asyncio.to_thread(source.read_bytes)
        await self._call(self.store.write_blob, path, data)
        return blob_url(path)

    async def download_blob(self, remote_url: str, dest_path: str) -> str:
        path = blob_path_from_url(remote_url)
        source = await self._call(self.store.blob_file, path)
        if not source.exists():
            raise RemoteLogicError(f"Blob not found: {path}", status=404)
        dest = Path(dest_path)
        await self._call(_copy_file, source, dest)
        return str(dest)

    async def get_profile(self, user_id: str) -> Optional[RemoteProfileRecord]:
        doc = await self._call(self.store.get_document, PROFILE_COLLECTION, user_id)
        return RemoteProfileRecord.from_dict(doc) if doc else None

    async def put_profile(self, record: RemoteProfileRecord) -> None:
        stored = await self._call(
            self.store.put_document,
            PROFILE_COLLECTION,
            record.user_id,
            record.user_id,
            record.to_dict(),
        )
        record.updated_at = stored["updatedAt"]

    async def close(self) -> None:
        await asyncio.to_thread(self.store.close)


def _copy_file(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, dest)


__all__ = ["StoreRemoteClient", "blob_url", "blob_path_from_url", "BLOB_URL_PREFIX"]
