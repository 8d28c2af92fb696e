"""Reference remote store server built on Starlette."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..configuration import ConfigurationBundle
from ..remote.store import DocumentStore
from .auth import APIKeyManager
from .routes import (
    delete_photo_handler,
    get_blob_handler,
    get_photo_handler,
    get_profile_handler,
    health_handler,
    list_photos_handler,
    put_blob_handler,
    put_photo_handler,
    put_profile_handler,
)

logger = logging.getLogger("travelog.api.server")

PUBLIC_PATHS = frozenset({"/health"})
STARTUP_TIMEOUT = 2.0


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Rejects requests without a valid ``X-API-Key`` header or ``api_key`` query value."""

    def __init__(self, app, key_manager: APIKeyManager) -> None:
        super().__init__(app)
        self.key_manager = key_manager

    async def dispatch(self, request, call_next):
        if request.url.path not in PUBLIC_PATHS:
            provided = request.headers.get("X-API-Key") or request.query_params.get("api_key", "")
            if not self.key_manager.validate_key(provided):
                return JSONResponse({"error": "Invalid or missing API key"}, status_code=401)
        return await call_next(request)


def create_app(
    store: DocumentStore,
    key_manager: Optional[APIKeyManager] = None,
    cors_origins: Sequence[str] = (),
    on_ready: Optional[Any] = None,
) -> Starlette:
    """Build the Starlette application serving ``store``.

    Without a ``key_manager`` every route is open; use that only for
    loopback testing.
    """
    middleware = []
    if cors_origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(cors_origins),
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        )
    if key_manager is not None:
        middleware.append(Middleware(APIKeyMiddleware, key_manager=key_manager))

    routes = [
        Route("/health", health_handler, methods=["GET"]),
        Route("/api/v1/photos", list_photos_handler, methods=["GET"]),
        Route("/api/v1/photos/{photo_id}", get_photo_handler, methods=["GET"]),
        Route("/api/v1/photos/{photo_id}", put_photo_handler, methods=["PUT"]),
        Route("/api/v1/photos/{photo_id}", delete_photo_handler, methods=["DELETE"]),
        Route("/api/v1/profiles/{user_id}", get_profile_handler, methods=["GET"]),
        Route("/api/v1/profiles/{user_id}", put_profile_handler, methods=["PUT"]),
        Route("/blobs/{path:path}", get_blob_handler, methods=["GET"]),
        Route("/blobs/{path:path}", put_blob_handler, methods=["PUT"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await asyncio.to_thread(store.initialize)
        if on_ready is not None:
            on_ready()
        yield
        logger.info("Remote store server shutting down")

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.store = store
    return app


@dataclass
class TravelogAPIServer:
    """Runs the reference remote store with uvicorn, optionally in a background thread."""

    config_bundle: ConfigurationBundle

    _state: APIServerState = field(default=APIServerState.STOPPED, init=False)
    _server: Optional[uvicorn.Server] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)
    _store: Optional[DocumentStore] = field(default=None, init=False)

    @property
    def state(self) -> APIServerState:
        return self._state

    @property
    def host(self) -> str:
        return str(self._api_config().get("host", "127.0.0.1"))

    @property
    def port(self) -> int:
        return int(self._api_config().get("port", 8750))

    @property
    def store_dir(self) -> Path:
        return self.config_bundle.resolve_path(str(self._api_config().get("store_dir", "remote")))

    @property
    def key_manager(self) -> APIKeyManager:
        return APIKeyManager(self.config_bundle.data_dir)

    @property
    def api_key(self) -> str:
        """Get or generate the API key."""
        return self.key_manager.get_or_generate_key()

    def _api_config(self) -> Dict[str, Any]:
        return self.config_bundle.section("api")

    def _create_app(self) -> Starlette:
        self._store = DocumentStore(self.store_dir)
        return create_app(
            self._store,
            key_manager=self.key_manager,
            cors_origins=self._api_config().get("cors_origins", []),
            on_ready=self._on_ready,
        )

    def _on_ready(self) -> None:
        logger.info("Remote store server listening on %s:%s", self.host, self.port)
        self._state = APIServerState.RUNNING

    def start(self, blocking: bool = False) -> bool:
        """Serve the remote store.

        With ``blocking`` the call returns only after the server exits;
        otherwise uvicorn runs on a daemon thread and this waits up to
        ``STARTUP_TIMEOUT`` seconds for it to come up.
        """
        if self._state == APIServerState.RUNNING:
            logger.warning("API server is already running")
            return False

        self._state = APIServerState.STARTING
        self._server = uvicorn.Server(
            uvicorn.Config(
                self._create_app(),
                host=self.host,
                port=self.port,
                log_level="warning",
                access_log=False,
            )
        )

        if blocking:
            self._serve_until_exit()
            return self._state != APIServerState.ERROR

        self._thread = threading.Thread(
            target=self._serve_until_exit,
            daemon=True,
            name="travelog-api-server",
        )
        self._thread.start()
        deadline = time.monotonic() + STARTUP_TIMEOUT
        while self._state == APIServerState.STARTING and time.monotonic() < deadline:
            time.sleep(0.1)
        return self._state == APIServerState.RUNNING

    def _serve_until_exit(self) -> None:
        try:
            asyncio.run(self._server.serve())
        except (OSError, RuntimeError) as exc:
            logger.exception("Remote store server failed: %s", exc)
            self._state = APIServerState.ERROR
        finally:
            self._close_store()
            if self._state != APIServerState.ERROR:
                self._state = APIServerState.STOPPED

    def stop(self) -> bool:
        """Stop the API server; returns False when it was not running."""
        if self._state != APIServerState.RUNNING:
            logger.warning("API server is not running")
            return False

        self._state = APIServerState.STOPPING
        if self._server:
            self._server.should_exit = True
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = APIServerState.STOPPED
        self._server = None
        self._thread = None
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "store_dir": str(self.store_dir),
            "url": f"http://{self.host}:{self.port}" if self._state == APIServerState.RUNNING else None,
        }

    def _close_store(self) -> None:
        if self._store is not None:
            self._store.close()


__all__ = ["TravelogAPIServer", "APIServerState", "create_app"]
