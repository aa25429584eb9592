import os
import sys
from datetime import datetime, timedelta, timezone

import pytest


# Allow running pytest from either the repo root or from within `tillsync/`.
# Tests import `tillsync.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from tillsync.app.repository import StateRepository  # noqa: E402
from tillsync.app.storage import MemoryStorage  # noqa: E402


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def repo(storage, clock):
    return StateRepository(storage, clock=clock).load()
