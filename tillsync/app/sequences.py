from typing import Iterable, Optional


def numeric_id(raw) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def max_numeric_id(records: Iterable[dict]) -> Optional[int]:
    best = None
    for r in records:
        n = numeric_id((r or {}).get("id"))
        if n is not None and (best is None or n > best):
            best = n
    return best


def next_sequence_id(records: Iterable[dict], start: int, high_water: int = 0) -> str:
    """
    One past the largest numeric id seen so far.

    `start` is the first id handed out for an empty collection. `high_water`
    is the last id ever issued for the collection, so hard-deleting the newest
    record does not hand its id out again. Non-numeric ids are ignored.
    """
    floor = max(int(start or 1) - 1, int(high_water or 0))
    current = max_numeric_id(records)
    if current is None or current < floor:
        current = floor
    return str(current + 1)
