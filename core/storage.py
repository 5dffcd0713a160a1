"""
SQLite-backed key-value store for client-side state.

Schema
──────
table: kv
  key        TEXT PRIMARY KEY
  value      BLOB NOT NULL   (opaque bytes, usually JSON)
  updated_at TEXT NOT NULL   (ISO-8601 UTC)
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "fetch_state.db"


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


class KeyValueStore:
    """Persistent ``bytes`` values addressed by string keys.

    A missing key is a normal state and reads back as ``None``.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path else _db_path()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key        TEXT PRIMARY KEY,
                    value      BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
        logger.info("Key-value store initialised at %s", self.path)

    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes for *key*, or None if not found."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        value = row["value"]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def set(self, key: str, value: bytes) -> None:
        """Insert or replace the value stored under *key*."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, sqlite3.Binary(value), now),
            )
        logger.debug("Stored %d bytes under key=%r", len(value), key)

    def delete(self, key: str) -> bool:
        """Delete *key*.

        Returns:
            True if a row was deleted, False if not found.
        """
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted key=%r", key)
        return deleted

    def keys(self, prefix: str = "") -> list[str]:
        """Return all keys starting with *prefix*, sorted."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row["key"] for row in rows]
