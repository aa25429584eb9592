import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from .logs import json_log

_LEVELS = {"error": "error", "warning": "warning"}


class Notifier:
    """Bounded list of user-visible notifications; UI collaborators drain it."""

    def __init__(self, limit: int = 50):
        self.limit = limit
        self._items: list[dict] = []
        self._lock = threading.Lock()

    def notify(self, title: str, message: str, kind: str = "info") -> dict:
        item = {
            "id": uuid.uuid4().hex,
            "title": title,
            "message": message,
            "kind": kind,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._items.append(item)
            del self._items[: max(0, len(self._items) - self.limit)]
        json_log(_LEVELS.get(kind, "info"), "notification", title=title, message=message, kind=kind)
        return item

    def items(self, kind: Optional[str] = None) -> list[dict]:
        with self._lock:
            return [dict(i) for i in self._items if kind is None or i["kind"] == kind]

    def drain(self) -> list[dict]:
        with self._lock:
            out, self._items = self._items, []
        return out
