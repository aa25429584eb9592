#!/usr/bin/env python3
"""
Device process: owns the local state and keeps it replicated.

init (load local storage, seed the first admin) -> run (timers, initial pull)
-> teardown (stop timers, flush local storage).
"""

from __future__ import annotations

import argparse
import signal
import threading

from tillsync.app.auth import AuthService
from tillsync.app.config import settings
from tillsync.app.logs import json_log
from tillsync.app.notifications import Notifier
from tillsync.app.repository import StateRepository
from tillsync.app.scheduler import ThreadingScheduler
from tillsync.app.storage import LocalStorage
from tillsync.app.sync import SyncEngine


class Device:
    def __init__(self, data_path: str, debounce: float, heartbeat: float, timeout: float):
        self.storage = LocalStorage(data_path)
        self.repo = StateRepository(self.storage, activity_cap=settings.activity_log_cap)
        self.auth = AuthService(self.repo)
        self.notifier = Notifier()
        self.engine = SyncEngine(
            self.repo,
            ThreadingScheduler(),
            self.notifier,
            debounce_seconds=debounce,
            heartbeat_seconds=heartbeat,
            timeout=timeout,
        )

    def init(self) -> None:
        self.repo.load()
        code = self.auth.ensure_initial_admin(settings.initial_admin_username, settings.initial_admin_password)
        if code:
            # Shown once; the admin needs it to recover a lost password.
            json_log("warning", "worker.initial_admin", username=settings.initial_admin_username, recovery_code=code)

    def run(self) -> None:
        self.engine.start()
        result = self.engine.pull(silent=True)
        json_log("info", "worker.initial_pull", result=result.value)

    def teardown(self) -> None:
        self.engine.stop()
        self.repo.flush()
        json_log("info", "worker.stopped")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--data", default=settings.data_path, help="Local sqlite file")
    parser.add_argument("--debounce", type=float, default=settings.debounce_seconds)
    parser.add_argument("--heartbeat", type=float, default=settings.heartbeat_seconds)
    parser.add_argument("--timeout", type=float, default=settings.remote_timeout_seconds)
    parser.add_argument("--once", action="store_true", help="Run a single sync pass and exit")
    args = parser.parse_args()

    device = Device(args.data, args.debounce, args.heartbeat, args.timeout)
    device.init()
    if args.once:
        try:
            if device.repo.pending.flag:
                result = device.engine.push()
            else:
                result = device.engine.pull(silent=True)
            json_log("info", "worker.sync_once", result=result.value)
        finally:
            device.teardown()
        return

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    device.run()
    try:
        while not stop.is_set():
            stop.wait(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        device.teardown()


if __name__ == "__main__":
    main()
