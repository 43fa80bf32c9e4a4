import fnmatch
import os
import sys

import pytest

# Ensure repository root is on sys.path for package imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from orchestration_service.config import get_settings


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client used by ResponseCache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.get_calls = 0
        self.fail_next = 0
        self.closed = False

    def _maybe_fail(self):
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionError("connection reset by peer")

    async def ping(self):
        return True

    async def get(self, key):
        self._maybe_fail()
        self.get_calls += 1
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._maybe_fail()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for k in keys:
            if k in self.store:
                del self.store[k]
                self.ttls.pop(k, None)
                removed += 1
        return removed

    async def aclose(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def settings():
    """Settings instance whose attribute changes are undone after the test."""
    s = get_settings()
    saved = dict(vars(s))
    yield s
    for k in list(vars(s)):
        if k not in saved:
            delattr(s, k)
    for k, v in saved.items():
        setattr(s, k, v)
