import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from . import codec
from .logs import json_log

CURRENT_USER_KEY = "current_user"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
)
"""


class LocalStorage:
    """
    Durable key/value storage for the device: one row per collection.

    Writes are best-effort. A lost cache write is recovered by the next pull,
    so sqlite errors are logged and swallowed instead of failing the mutation.
    """

    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            conn.commit()

    def _connect(self):
        return sqlite3.connect(self.path)

    def load(self, key: str, fallback: Any) -> Any:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as ex:
            json_log("warning", "storage.read_failed", key=key, error=str(ex))
            return fallback
        if not row:
            return fallback
        return codec.decode(row[0], fallback)

    def save(self, key: str, value: Any) -> bool:
        if value is None:
            return False
        token = codec.encode(value)
        if not token:
            return False
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                      value=excluded.value,
                      updated_at=excluded.updated_at
                    """,
                    (key, token, datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
            return True
        except sqlite3.Error as ex:
            json_log("warning", "storage.write_failed", key=key, error=str(ex))
            return False

    def remove(self, key: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as ex:
            json_log("warning", "storage.delete_failed", key=key, error=str(ex))

    def keys(self) -> list[str]:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("SELECT key FROM kv ORDER BY key")
                return [r[0] for r in cur.fetchall()]
        except sqlite3.Error as ex:
            json_log("warning", "storage.read_failed", key="*", error=str(ex))
            return []

    def raw(self, key: str):
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
            return row[0] if row else None


class MemoryStorage:
    """Same contract as LocalStorage, kept in a dict (tests, throwaway sessions)."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def load(self, key: str, fallback: Any) -> Any:
        return codec.decode(self._data.get(key), fallback)

    def save(self, key: str, value: Any) -> bool:
        if value is None:
            return False
        token = codec.encode(value)
        if not token:
            return False
        self._data[key] = token
        return True

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def raw(self, key: str):
        return self._data.get(key)
