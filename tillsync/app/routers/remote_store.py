from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..logs import json_log

router = APIRouter(tags=["remote-store"])

# Payloads shorter than this are a connection check, not a snapshot.
MIN_PAYLOAD_CHARS = 5
# Previous values at or below this size are not worth a backup slot.
MIN_BACKUP_CHARS = 10


class RemoteStore:
    """
    The single authoritative copy of a store's snapshot plus a rolling backup
    history. Every request is serialized by one lock; a request that cannot
    get it in time is answered `busy`.
    """

    def __init__(self, db_path: str, secret: str = "", backup_limit: int = 50, lock_timeout: float = 30.0):
        self.db_path = db_path
        self.secret = secret or ""
        self.backup_limit = max(1, int(backup_limit))
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS snapshot (id INTEGER PRIMARY KEY CHECK (id = 1), payload TEXT NOT NULL, updated_at TEXT NOT NULL)")
            conn.execute("CREATE TABLE IF NOT EXISTS backups (id INTEGER PRIMARY KEY AUTOINCREMENT, payload TEXT NOT NULL, updated_at TEXT NOT NULL)")

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _read(self, conn) -> Optional[tuple]:
        return conn.execute("SELECT payload, updated_at FROM snapshot WHERE id = 1").fetchone()

    def backups(self) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, payload, updated_at FROM backups ORDER BY id DESC").fetchall()
        return [{"id": r[0], "payload": r[1], "updated_at": r[2]} for r in rows]

    def _push(self, conn, payload: str) -> dict:
        if len(payload) < MIN_PAYLOAD_CHARS:
            return {"status": "success", "message": "connection verified"}
        now = datetime.now(timezone.utc).isoformat()
        current = self._read(conn)
        if current and len(current[0] or "") > MIN_BACKUP_CHARS:
            conn.execute("INSERT INTO backups (payload, updated_at) VALUES (?, ?)", (current[0], current[1]))
            conn.execute(
                "DELETE FROM backups WHERE id NOT IN (SELECT id FROM backups ORDER BY id DESC LIMIT ?)",
                (self.backup_limit,),
            )
        conn.execute(
            """
            INSERT INTO snapshot (id, payload, updated_at) VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
            """,
            (payload, now),
        )
        json_log("info", "remote_store.push", bytes=len(payload))
        return {"status": "success", "version": now}

    def handle(self, action: str, secret: Optional[str], payload: Optional[str]) -> dict:
        if not self._lock.acquire(timeout=self.lock_timeout):
            json_log("warning", "remote_store.busy")
            return {"status": "busy"}
        try:
            if self.secret and (secret or "") != self.secret:
                json_log("warning", "remote_store.access_denied", action=action)
                return {"status": "error", "message": "access denied"}
            action = (action or "").strip().lower()
            with self._connect() as conn:
                if action == "pull":
                    row = self._read(conn)
                    if not row:
                        return {}
                    return {"status": "success", "payload": row[0]}
                if action == "push":
                    return self._push(conn, payload or "")
            return {"status": "error", "message": f"unknown action: {action or '(none)'}"}
        except sqlite3.Error as ex:
            json_log("error", "remote_store.storage_failed", error=str(ex))
            return {"status": "error", "message": "storage failure"}
        finally:
            self._lock.release()


_store: Optional[RemoteStore] = None
_store_lock = threading.Lock()


def get_store() -> RemoteStore:
    global _store
    with _store_lock:
        if _store is None:
            _store = RemoteStore(
                settings.remote_store_db_path,
                secret=settings.remote_store_secret,
                backup_limit=settings.remote_store_backup_limit,
                lock_timeout=settings.remote_store_lock_timeout,
            )
        return _store


def _fields(body: dict, query) -> tuple[str, Optional[str], Optional[str]]:
    action = query.get("action") or body.get("action") or ""
    secret = query.get("secret") if "secret" in query else body.get("secret")
    payload = query.get("payload") or body.get("payload")
    return str(action), secret, payload if payload is None else str(payload)


@router.get("/exec")
async def exec_get(req: Request, store: RemoteStore = Depends(get_store)):
    action, secret, payload = _fields({}, req.query_params)
    return await run_in_threadpool(store.handle, action, secret, payload)


@router.post("/exec")
async def exec_post(req: Request, store: RemoteStore = Depends(get_store)):
    raw = (await req.body()).decode("utf-8", errors="replace")
    try:
        body = json.loads(raw) if raw.strip() else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    action, secret, payload = _fields(body, req.query_params)
    return await run_in_threadpool(store.handle, action, secret, payload)
