"""Remote store contract and its implementations."""

from __future__ import annotations

import logging

from ..configuration import ConfigurationBundle
from .base import RemoteClient, blob_path_for, local_file
from .http import HttpRemoteClient
from .local import StoreRemoteClient
from .store import DocumentStore

logger = logging.getLogger("travelog.remote")


def build_remote_client(bundle: ConfigurationBundle) -> RemoteClient:
    """Instantiate the remote client selected by ``remote.kind``."""

    remote_cfg = bundle.section("remote")
    kind = str(remote_cfg.get("kind", "local"))

    if kind == "http":
        client: RemoteClient = HttpRemoteClient(
            base_url=str(remote_cfg.get("base_url", "")),
            api_key=str(remote_cfg.get("api_key", "")),
            timeout=float(remote_cfg.get("timeout", 30)),
        )
        logger.info("Using HTTP remote store at %s", remote_cfg.get("base_url"))
        return client

    store_dir = bundle.resolve_path(str(remote_cfg.get("store_dir", "remote")))
    logger.info("Using document store remote at %s", store_dir)
    return StoreRemoteClient(DocumentStore(store_dir))


__all__ = [
    "RemoteClient",
    "DocumentStore",
    "HttpRemoteClient",
    "StoreRemoteClient",
    "blob_path_for",
    "build_remote_client",
    "local_file",
]
