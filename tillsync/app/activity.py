import uuid
from typing import Optional

from .models import ActivityEntry

SYSTEM_ACTOR = {"id": "system", "username": "system", "role": None}


class ActivityLog:
    """Append-only record of mutating actions, newest first, capped."""

    def __init__(self, entries: Optional[list] = None, cap: int = 500):
        self.cap = max(1, int(cap or 500))
        self._entries: list[dict] = [dict(e) for e in (entries or []) if isinstance(e, dict)][: self.cap]

    def append(self, actor: Optional[dict], action: str, details: str, now: str) -> dict:
        who = actor or SYSTEM_ACTOR
        entry = ActivityEntry(
            id=uuid.uuid4().hex,
            user_id=str(who.get("id") or "system"),
            user_name=str(who.get("username") or "system"),
            user_role=who.get("role"),
            action=action,
            details=details or "",
            timestamp=now,
        ).model_dump()
        self._entries.insert(0, entry)
        del self._entries[self.cap:]
        return dict(entry)

    def entries(self) -> list[dict]:
        return [dict(e) for e in self._entries]

    def replace(self, entries: list) -> None:
        self._entries = [dict(e) for e in (entries or []) if isinstance(e, dict)][: self.cap]

    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)
