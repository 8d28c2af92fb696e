"""HTTP client for the reference remote store server."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from ..errors import RemoteLogicError, RemoteNetworkError
from ..models import RemotePhotoRecord, RemoteProfileRecord
from .base import RemoteClient, local_file

logger = logging.getLogger("travelog.remote.http")

GATEWAY_STATUSES = {502, 503, 504}


class HttpRemoteClient(RemoteClient):
    """Remote client speaking JSON over HTTP; blocking I/O runs in worker threads."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self, content_type: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> bytes:
        url = self._url(path)
        req = Request(url, data=data, headers=self._headers(content_type), method=method)
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return resp.read()
        except HTTPError as e:
            detail = f"HTTP {e.code} {e.reason} for {method} {url}"
            if e.code in GATEWAY_STATUSES:
                raise RemoteNetworkError(detail) from e
            raise RemoteLogicError(detail, status=e.code) from e
        except URLError as e:
            raise RemoteNetworkError(f"Connection error for {method} {url}: {e.reason}") from e
        except OSError as e:
            raise RemoteNetworkError(f"Connection error for {method} {url}: {e}") from e

    async def _request_json(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        raw = await asyncio.to_thread(
            self._send,
            method,
            path,
            data=data,
            content_type="application/json" if data is not None else None,
        )
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RemoteLogicError(f"Malformed response for {method} {path}: {e}") from e

    async def _get_optional(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._request_json("GET", path)
        except RemoteLogicError as e:
            if e.status == 404:
                return None
            raise

    async def check_connectivity(self) -> bool:
        try:
            await self._request_json("GET", "/health")
        except (RemoteNetworkError, RemoteLogicError) as e:
            logger.info("Remote store unreachable: %s", e)
            return False
        return True

    async def list_photos_for_user(self, user_id: str) -> List[RemotePhotoRecord]:
        query = urlencode({"userId": user_id})
        body = await self._request_json("GET", f"/api/v1/photos?{query}")
        try:
            return [RemotePhotoRecord.from_dict(item) for item in body["photos"]]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteLogicError(f"Malformed photo listing: {e}") from e

    async def get_photo(self, photo_id: str) -> Optional[RemotePhotoRecord]:
        body = await self._get_optional(f"/api/v1/photos/{quote(photo_id, safe='')}")
        return RemotePhotoRecord.from_dict(body) if body else None

    async def put_photo(self, record: RemotePhotoRecord) -> None:
        body = await self._request_json(
            "PUT",
            f"/api/v1/photos/{quote(record.id, safe='')}",
            record.to_dict(),
        )
        if body and "updatedAt" in body:
            record.updated_at = int(body["updatedAt"])

    async def delete_photo(self, photo_id: str) -> None:
        await self._request_json("DELETE", f"/api/v1/photos/{quote(photo_id, safe='')}")

    async def upload_blob(self, local_uri: str, path: str) -> str:
        data = await asyncio.to_thread(local_file(local_uri).read_bytes)
        raw = await asyncio.to_thread(
            self._send,
            "PUT",
            f"/blobs/{quote(path)}",
            data=data,
            content_type="application/octet-stream",
        )
        try:
            return str(json.loads(raw.decode("utf-8"))["url"])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise RemoteLogicError(f"Malformed blob upload response: {e}") from e

    async def download_blob(self, remote_url: str, dest_path: str) -> str:
        data = await asyncio.to_thread(self._send, "GET", remote_url)
        dest = Path(dest_path)
        await asyncio.to_thread(_write_file, dest, data)
        return str(dest)

    async def get_profile(self, user_id: str) -> Optional[RemoteProfileRecord]:
        body = await self._get_optional(f"/api/v1/profiles/{quote(user_id, safe='')}")
        return RemoteProfileRecord.from_dict(body) if body else None

    async def put_profile(self, record: RemoteProfileRecord) -> None:
        body = await self._request_json(
            "PUT",
            f"/api/v1/profiles/{quote(record.user_id, safe='')}",
            record.to_dict(),
        )
        if body and "updatedAt" in body:
            record.updated_at = int(body["updatedAt"])


def _write_file(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)


__all__ = ["HttpRemoteClient"]
