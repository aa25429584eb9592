"""
Full-snapshot replication against a single remote store.

Guard rails:
- a push from a device with no products, no customers and no activity is
  refused unless forced (a fresh or reset device must not wipe the remote);
- one push or pull in flight at a time, extra requests get BUSY;
- a pull while local changes are pending becomes a push;
- mutations re-arm a debounce timer that pushes after a quiet period;
- a heartbeat pushes pending changes, otherwise pulls silently.

Conflicts are last-writer-wins per collection.
"""

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from .logs import json_log
from .notifications import Notifier
from .remote_client import RemoteStoreClient, RemoteStoreError
from .settings_merge import merge_settings


class SyncResult(str, Enum):
    PUSHED = "PUSHED"
    PULLED = "PULLED"
    SKIPPED = "SKIPPED"
    REFUSED_EMPTY = "REFUSED_EMPTY"
    BUSY = "BUSY"
    FAILED = "FAILED"
    REMOTE_EMPTY = "REMOTE_EMPTY"
    STALE = "STALE"


class SyncEngine:
    def __init__(
        self,
        repository,
        scheduler,
        notifier: Optional[Notifier] = None,
        client_factory: Callable[..., RemoteStoreClient] = RemoteStoreClient,
        debounce_seconds: float = 5,
        heartbeat_seconds: float = 30,
        timeout: float = 15,
    ):
        self.repo = repository
        self.scheduler = scheduler
        self.notifier = notifier or Notifier()
        self.client_factory = client_factory
        self.debounce_seconds = debounce_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.timeout = timeout
        self.last_sync_at: Optional[str] = None
        self._flight = threading.Lock()
        self._timers = threading.Lock()
        self._debounce = None
        self._heartbeat = None
        repository.add_change_listener(self.schedule_push)

    # ---- timers ----------------------------------------------------------

    def start(self) -> None:
        with self._timers:
            if self._heartbeat is None:
                self._heartbeat = self.scheduler.call_every(self.heartbeat_seconds, self._on_heartbeat)

    def stop(self) -> None:
        with self._timers:
            for handle in (self._debounce, self._heartbeat):
                if handle is not None:
                    handle.cancel()
            self._debounce = None
            self._heartbeat = None

    def schedule_push(self) -> None:
        with self._timers:
            if self._debounce is not None:
                self._debounce.cancel()
            self._debounce = self.scheduler.call_later(self.debounce_seconds, self._on_debounce)

    def _on_debounce(self) -> None:
        with self._timers:
            self._debounce = None
        self.push()

    def _on_heartbeat(self) -> None:
        if self.repo.pending.flag:
            self.push()
        else:
            self.pull(silent=True)

    # ---- helpers ---------------------------------------------------------

    def _endpoint(self, url: Optional[str], secret: Optional[str], explicit: bool):
        s = self.repo.settings
        if url:
            return url, secret if secret is not None else (s.get("remote_secret") or "")
        if not s.get("remote_url") or not (s.get("sync_enabled") or explicit):
            return None, None
        return s.get("remote_url"), s.get("remote_secret") or ""

    def _failed(self, op: str, ex: Exception, silent: bool) -> SyncResult:
        json_log("warning", f"sync.{op}_failed", error=str(ex), error_type=type(ex).__name__)
        if not silent:
            self.notifier.notify("Sync error", f"{op} failed: {ex}", kind="error")
        return SyncResult.FAILED

    def _stamp(self) -> None:
        self.last_sync_at = datetime.now(timezone.utc).isoformat()

    # ---- operations ------------------------------------------------------

    def push(self, force: bool = False, manual: bool = False, url: Optional[str] = None, secret: Optional[str] = None) -> SyncResult:
        url, secret = self._endpoint(url, secret, force or manual)
        if not url:
            return SyncResult.SKIPPED
        if not (force or manual) and self.repo.is_locally_empty() and not self.repo.has_activity():
            json_log("warning", "sync.push_refused_empty")
            return SyncResult.REFUSED_EMPTY
        if not self._flight.acquire(blocking=False):
            return SyncResult.BUSY
        try:
            with self.repo.lock:
                revision = self.repo.pending.revision
                snapshot = self.repo.snapshot()
            try:
                self.client_factory(url, secret, self.timeout).push(snapshot)
            except RemoteStoreError as ex:
                return self._failed("push", ex, silent=False)

            if not self.repo.clear_pending(revision):
                # Mutated while the snapshot was on the wire.
                self.schedule_push()
            self._stamp()
            json_log("info", "sync.pushed", revision=revision)
            if manual:
                self.notifier.notify("Sync", "Data uploaded", kind="success")
            return SyncResult.PUSHED
        finally:
            self._flight.release()

    def pull(self, force: bool = False, silent: bool = False, url: Optional[str] = None, secret: Optional[str] = None) -> SyncResult:
        url, secret = self._endpoint(url, secret, force)
        if not url:
            return SyncResult.SKIPPED
        if self.repo.pending.flag and not force:
            json_log("info", "sync.pull_converted_to_push")
            return self.push(url=url, secret=secret)
        if not self._flight.acquire(blocking=False):
            return SyncResult.BUSY
        try:
            revision = self.repo.pending.revision
            try:
                data = self.client_factory(url, secret, self.timeout).pull()
            except RemoteStoreError as ex:
                return self._failed("pull", ex, silent=silent)

            if not data or not isinstance(data, dict):
                json_log("info", "sync.remote_empty")
                return SyncResult.REMOTE_EMPTY
            if not self.repo.apply_remote_snapshot(data, merge_settings, revision):
                json_log("info", "sync.pull_stale", revision=revision)
                return SyncResult.STALE
            self._stamp()
            json_log("info", "sync.pulled")
            if not silent:
                self.notifier.notify("Sync", "Data downloaded", kind="success")
            return SyncResult.PULLED
        finally:
            self._flight.release()

    def hard_reset(self) -> SyncResult:
        """Discard the pending marker and take the remote copy as-is."""
        self.repo.hard_reset()
        return self.pull(force=True)

    def verify_connection(self, url: str, secret: str = "") -> bool:
        try:
            return self.client_factory(url, secret, self.timeout).verify()
        except RemoteStoreError as ex:
            self._failed("verify", ex, silent=False)
            return False
