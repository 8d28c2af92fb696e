"""Shared fixtures: a throwaway document store, remote clients and journal stores."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional

import pytest

from travelog.errors import RemoteLogicError, RemoteNetworkError
from travelog.models import RemotePhotoRecord
from travelog.remote.local import StoreRemoteClient
from travelog.remote.store import DocumentStore
from travelog.storage import LocalStore, MemoryKeyValueBackend
from travelog.sync import SyncEngine, SyncSettings


class FlakyRemote(StoreRemoteClient):
    """Document-store remote that can be told to fail specific calls."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        online: bool = True,
        delay: float = 0.0,
        fail_uploads: Iterable[str] = (),
        fail_deletes: Iterable[str] = (),
        fail_listing: bool = False,
        on_connect: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        super().__init__(store)
        self.online = online
        self.delay = delay
        self.fail_uploads = set(fail_uploads)
        self.fail_deletes = set(fail_deletes)
        self.fail_listing = fail_listing
        self.on_connect = on_connect
        self.uploaded_paths: List[str] = []

    async def check_connectivity(self) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.on_connect is not None:
            await self.on_connect()
        if not self.online:
            return False
        return await super().check_connectivity()

    async def upload_blob(self, local_uri: str, path: str) -> str:
        if any(path.endswith(photo_id) for photo_id in self.fail_uploads):
            raise RemoteNetworkError(f"Upload of {path} timed out")
        self.uploaded_paths.append(path)
        return await super().upload_blob(local_uri, path)

    async def delete_photo(self, photo_id: str) -> None:
        if photo_id in self.fail_deletes:
            raise RemoteNetworkError("Connection reset during delete")
        await super().delete_photo(photo_id)

    async def list_photos_for_user(self, user_id: str) -> List[RemotePhotoRecord]:
        if self.fail_listing:
            raise RemoteLogicError("Listing rejected", status=500)
        return await super().list_photos_for_user(user_id)


@pytest.fixture
def document_store(tmp_path: Path):
    store = DocumentStore(tmp_path / "remote")
    yield store
    store.close()


@pytest.fixture
def remote(document_store: DocumentStore) -> FlakyRemote:
    return FlakyRemote(document_store)


@pytest.fixture
def make_remote(document_store: DocumentStore):
    def _make(**kwargs) -> FlakyRemote:
        return FlakyRemote(document_store, **kwargs)

    return _make


@pytest.fixture
def local_store() -> LocalStore:
    return LocalStore(MemoryKeyValueBackend())


@pytest.fixture
def make_image(tmp_path: Path):
    def _make(name: str = "photo.jpg", data: bytes = b"\xff\xd8\xff\xe0jpeg-bytes") -> str:
        path = tmp_path / "camera" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)

    return _make


@pytest.fixture
def make_engine(tmp_path: Path, local_store: LocalStore, remote: FlakyRemote):
    """Build an engine; each ``device`` gets its own media directory."""

    def _make(
        *,
        store: Optional[LocalStore] = None,
        client: Optional[StoreRemoteClient] = None,
        device: str = "phone",
        **settings,
    ) -> SyncEngine:
        return SyncEngine(
            store or local_store,
            client or remote,
            media_dir=tmp_path / device / "media",
            settings=SyncSettings(**settings),
        )

    return _make
