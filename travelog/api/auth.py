"""Shared-secret authentication for the remote store API.

The key lives in ``<data_dir>/config/.api_key`` so that a journal client
pointed at the same data directory can pick it up without extra setup.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("travelog.api.auth")

KEY_FILENAME = ".api_key"
KEY_BYTES = 32


@dataclass
class APIKeyManager:
    """Loads, creates and checks the API key of one data directory."""

    data_dir: Path
    _cached_key: Optional[str] = None

    @property
    def key_file_path(self) -> Path:
        return self.data_dir / "config" / KEY_FILENAME

    def get_or_generate_key(self) -> str:
        """Return the stored key, creating and persisting one on first use."""
        if not self._cached_key:
            self._cached_key = self._read_stored_key() or self._issue_key()
        return self._cached_key

    def validate_key(self, provided_key: str) -> bool:
        if not provided_key:
            return False
        return secrets.compare_digest(provided_key, self.get_or_generate_key())

    def regenerate_key(self) -> str:
        """Replace the current key; clients holding the old one are locked out."""
        self._cached_key = self._issue_key()
        logger.info("API key regenerated (fingerprint %s)", hash_key(self._cached_key))
        return self._cached_key

    def _read_stored_key(self) -> Optional[str]:
        path = self.key_file_path
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8").strip() or None
        except OSError as exc:
            logger.warning("Unable to read API key file %s: %s", path, exc)
            return None

    def _issue_key(self) -> str:
        key = secrets.token_hex(KEY_BYTES)
        path = self.key_file_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(key, encoding="utf-8")
            path.chmod(0o600)
        except OSError as exc:
            logger.warning("API key kept in memory only: %s", exc)
        return key


def hash_key(key: str) -> str:
    """Short sha256 fingerprint, safe to log or print."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


__all__ = ["APIKeyManager", "hash_key"]
