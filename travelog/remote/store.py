"""SQLite document collections plus a blob directory backing the remote store."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

from ..models import now_millis

logger = logging.getLogger("travelog.remote.store")

DB_FILENAME = "documents.db"
BLOB_DIRNAME = "blobs"


class DocumentStore:
    """Document collections keyed by id with a ``user_id`` ownership column.

    Safe to share between threads; every statement runs under one lock.
    """

    def __init__(self, root: Path):
        self.root = root
        self.db_path = root / DB_FILENAME
        self.blob_dir = root / BLOB_DIRNAME
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Create the database and blob directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (collection, id)
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_owner
                ON documents(collection, user_id, updated_at)
            """)
            self._conn.commit()
        logger.info("Document store ready at %s", self.root)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.initialize()
        return self._conn

    def list_documents(self, collection: str, user_id: str) -> List[Dict[str, Any]]:
        """Documents owned by ``user_id``, most recently updated first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT body, updated_at FROM documents "
                "WHERE collection = ? AND user_id = ? ORDER BY updated_at DESC, id",
                (collection, user_id),
            ).fetchall()
        return [self._decode(row) for row in rows]

    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT body, updated_at FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        return self._decode(row) if row else None

    def put_document(
        self,
        collection: str,
        doc_id: str,
        user_id: str,
        body: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Upsert a document; the store stamps ``updatedAt``."""
        with self._lock:
            previous = self.conn.execute(
                "SELECT MAX(updated_at) FROM documents WHERE collection = ? AND user_id = ?",
                (collection, user_id),
            ).fetchone()[0]
            updated_at = max(now_millis(), (previous or 0) + 1)
            stored = dict(body, updatedAt=updated_at)
            self.conn.execute(
                "INSERT INTO documents (collection, id, user_id, body, updated_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(collection, id) DO UPDATE SET "
                "user_id = excluded.user_id, body = excluded.body, updated_at = excluded.updated_at",
                (collection, doc_id, user_id, json.dumps(stored), updated_at),
            )
            self.conn.commit()
        return stored

    def delete_document(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def blob_file(self, path: str) -> Path:
        """Resolve a blob path inside the blob directory, rejecting traversal."""
        parts = PurePosixPath(path).parts
        if not parts or any(part in ("..", "/") for part in parts):
            raise ValueError(f"Invalid blob path '{path}'")
        return self.blob_dir.joinpath(*parts)

    def write_blob(self, path: str, data: bytes) -> Path:
        target = self.blob_file(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Stored blob %s (%d bytes)", path, len(data))
        return target

    def read_blob(self, path: str) -> Optional[bytes]:
        target = self.blob_file(path)
        if not target.exists():
            return None
        return target.read_bytes()

    def delete_blob(self, path: str) -> bool:
        target = self.blob_file(path)
        if not target.exists():
            return False
        target.unlink()
        return True

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        body = json.loads(row["body"])
        body["updatedAt"] = row["updated_at"]
        return body


__all__ = ["DocumentStore"]
