"""
Cancellable timers for the sync engine.

`ThreadingScheduler` runs callbacks on `threading.Timer` threads (device
process). `VirtualScheduler` only fires callbacks when `advance()` moves its
clock, so timing behaviour is testable without sleeping.
"""

import heapq
import itertools
import threading
from typing import Callable, Optional

from .logs import json_log


class TimerHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


def _run(fn: Callable[[], object]) -> None:
    try:
        fn()
    except Exception as ex:
        json_log("error", "scheduler.callback_failed", error=str(ex), error_type=type(ex).__name__)


class _ThreadedHandle(TimerHandle):
    def __init__(self):
        super().__init__()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _arm(self, delay: float, fn: Callable[[], None]) -> None:
        with self._lock:
            if self.cancelled:
                return
            t = threading.Timer(delay, fn)
            t.daemon = True
            self._timer = t
            t.start()

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True
            if self._timer is not None:
                self._timer.cancel()


class ThreadingScheduler:
    def call_later(self, delay: float, fn: Callable[[], object]) -> TimerHandle:
        handle = _ThreadedHandle()

        def fire():
            if not handle.cancelled:
                _run(fn)

        handle._arm(delay, fire)
        return handle

    def call_every(self, interval: float, fn: Callable[[], object]) -> TimerHandle:
        handle = _ThreadedHandle()

        def tick():
            if handle.cancelled:
                return
            _run(fn)
            handle._arm(interval, tick)

        handle._arm(interval, tick)
        return handle


class VirtualScheduler:
    def __init__(self):
        self.now = 0.0
        self._queue: list = []
        self._seq = itertools.count()

    def _push(self, at: float, handle: TimerHandle, fn, interval: Optional[float]) -> None:
        heapq.heappush(self._queue, (at, next(self._seq), handle, fn, interval))

    def call_later(self, delay: float, fn: Callable[[], object]) -> TimerHandle:
        handle = TimerHandle()
        self._push(self.now + delay, handle, fn, None)
        return handle

    def call_every(self, interval: float, fn: Callable[[], object]) -> TimerHandle:
        handle = TimerHandle()
        self._push(self.now + interval, handle, fn, interval)
        return handle

    def pending(self) -> int:
        return sum(1 for item in self._queue if not item[2].cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            at, _, handle, fn, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = at
            _run(fn)
            if interval is not None and not handle.cancelled:
                self._push(at + interval, handle, fn, interval)
        self.now = target
