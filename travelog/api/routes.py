"""Route handlers for the reference remote store API."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..remote.base import PHOTO_COLLECTION, PROFILE_COLLECTION, blob_path_for
from ..remote.store import DocumentStore

logger = logging.getLogger("travelog.api.routes")


def _store(request: Request) -> DocumentStore:
    return request.app.state.store


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


async def health_handler(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "travelog-store",
    })


async def list_photos_handler(request: Request) -> JSONResponse:
    """Photo documents of one user, most recently updated first."""
    user_id = request.query_params.get("userId", "")
    if not user_id:
        return _error("userId query parameter required", 400)
    docs = await run_in_threadpool(_store(request).list_documents, PHOTO_COLLECTION, user_id)
    return JSONResponse({"photos": docs})


async def get_photo_handler(request: Request) -> JSONResponse:
    photo_id = request.path_params["photo_id"]
    doc = await run_in_threadpool(_store(request).get_document, PHOTO_COLLECTION, photo_id)
    if doc is None:
        return _error(f"Photo '{photo_id}' not found", 404)
    return JSONResponse(doc)


async def put_photo_handler(request: Request) -> JSONResponse:
    """Upsert a photo document keyed by the path id."""
    photo_id = request.path_params["photo_id"]
    body = await _json_body(request)
    if body is None:
        return _error("Request body must be a JSON object", 400)
    if str(body.get("id", photo_id)) != photo_id:
        return _error("Body id does not match the path", 400)
    user_id = str(body.get("userId") or "")
    if not user_id:
        return _error("userId required", 400)

    store = _store(request)
    existing = await run_in_threadpool(store.get_document, PHOTO_COLLECTION, photo_id)
    if existing is not None and existing.get("userId") != user_id:
        return _error(f"Photo '{photo_id}' belongs to another user", 403)

    body["id"] = photo_id
    stored = await run_in_threadpool(store.put_document, PHOTO_COLLECTION, photo_id, user_id, body)
    logger.info("Stored photo %s for %s", photo_id, user_id)
    return JSONResponse(stored)


async def delete_photo_handler(request: Request) -> JSONResponse:
    """Delete a photo document and its blob; deleting a missing photo is not an error."""
    photo_id = request.path_params["photo_id"]
    store = _store(request)
    doc = await run_in_threadpool(store.get_document, PHOTO_COLLECTION, photo_id)
    if doc is None:
        return JSONResponse({"deleted": False})
    await run_in_threadpool(store.delete_document, PHOTO_COLLECTION, photo_id)
    await run_in_threadpool(store.delete_blob, blob_path_for(str(doc.get("userId", "")), photo_id))
    logger.info("Deleted photo %s", photo_id)
    return JSONResponse({"deleted": True})


async def get_profile_handler(request: Request) -> JSONResponse:
    user_id = request.path_params["user_id"]
    doc = await run_in_threadpool(_store(request).get_document, PROFILE_COLLECTION, user_id)
    if doc is None:
        return _error(f"Profile '{user_id}' not found", 404)
    return JSONResponse(doc)


async def put_profile_handler(request: Request) -> JSONResponse:
    user_id = request.path_params["user_id"]
    body = await _json_body(request)
    if body is None:
        return _error("Request body must be a JSON object", 400)
    if str(body.get("userId", user_id)) != user_id:
        return _error("Body userId does not match the path", 400)
    body["userId"] = user_id
    stored = await run_in_threadpool(
        _store(request).put_document, PROFILE_COLLECTION, user_id, user_id, body
    )
    return JSONResponse(stored)


async def put_blob_handler(request: Request) -> JSONResponse:
    """Store raw bytes at the path and return the URL to fetch them from."""
    path = request.path_params["path"]
    data = await request.body()
    try:
        await run_in_threadpool(_store(request).write_blob, path, data)
    except ValueError as e:
        return _error(str(e), 400)
    url = f"{str(request.base_url).rstrip('/')}/blobs/{path}"
    return JSONResponse({"url": url, "size": len(data)})


async def get_blob_handler(request: Request) -> Response:
    path = request.path_params["path"]
    try:
        data = await run_in_threadpool(_store(request).read_blob, path)
    except ValueError as e:
        return _error(str(e), 400)
    if data is None:
        return _error(f"Blob '{path}' not found", 404)
    return Response(data, media_type="application/octet-stream")


__all__ = [
    "health_handler",
    "list_photos_handler",
    "get_photo_handler",
    "put_photo_handler",
    "delete_photo_handler",
    "get_profile_handler",
    "put_profile_handler",
    "put_blob_handler",
    "get_blob_handler",
]
