"""Shared fixtures and in-process cache fakes.

``FakeRedis`` and ``FakeMemcache`` implement just the client methods the
stores call, with TTLs driven by a controllable clock, so the cache
stores can be exercised without a server.  Both record every call so
tests can count payload writes.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from session_store.client import ClientContext


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakeKeyValue:
    """Dict of ``key -> (value, expires_at | None)`` with call recording."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.data: dict[str, tuple[bytes, float | None]] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @staticmethod
    def _encode(value: Any) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode()

    def _alive(self, key: str) -> bool:
        entry = self.data.get(key)
        if entry is None:
            return False
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self.clock():
            del self.data[key]
            return False
        return True

    def _store(self, key: str, value: Any, ttl: float | None) -> None:
        expires_at = self.clock() + ttl if ttl else None
        self.data[key] = (self._encode(value), expires_at)

    def calls_to(self, method: str, key: str | None = None) -> int:
        return sum(1 for name, k in self.calls if name == method and (key is None or k == key))


class FakeRedis(_FakeKeyValue):
    """Subset of ``redis.Redis`` (bytes responses)."""

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> bytes | None:
        self.calls.append(("get", key))
        return self.data[key][0] if self._alive(key) else None

    def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        self.calls.append(("set", key))
        if nx and self._alive(key):
            return None
        self._store(key, value, ex)
        return True

    def expire(self, key: str, ttl: int) -> bool:
        self.calls.append(("expire", key))
        if not self._alive(key):
            return False
        self._store(key, self.data[key][0], ttl)
        return True

    def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        expires_at = self.data[key][1]
        return -1 if expires_at is None else int(expires_at - self.clock())

    def delete(self, key: str) -> int:
        self.calls.append(("delete", key))
        if not self._alive(key):
            return 0
        del self.data[key]
        return 1

    def close(self) -> None:
        self.closed = True


class FakeMemcache(_FakeKeyValue):
    """Subset of ``pymemcache`` clients (relative expirations only)."""

    def get(self, key: str) -> bytes | None:
        self.calls.append(("get", key))
        return self.data[key][0] if self._alive(key) else None

    def set(self, key: str, value: Any, expire: int = 0, noreply: bool | None = None) -> bool:
        self.calls.append(("set", key))
        self._store(key, value, expire)
        return True

    def add(self, key: str, value: Any, expire: int = 0, noreply: bool | None = None) -> bool:
        self.calls.append(("add", key))
        if self._alive(key):
            return False
        self._store(key, value, expire)
        return True

    def touch(self, key: str, expire: int = 0, noreply: bool | None = None) -> bool:
        self.calls.append(("touch", key))
        if not self._alive(key):
            return False
        self._store(key, self.data[key][0], expire)
        return True

    def delete(self, key: str, noreply: bool | None = None) -> bool:
        self.calls.append(("delete", key))
        if not self._alive(key):
            return False
        del self.data[key]
        return True

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture()
def fake_memcache(clock: FakeClock) -> FakeMemcache:
    return FakeMemcache(clock)


@pytest.fixture()
def client() -> ClientContext:
    return ClientContext(
        ip="192.168.1.2",
        user_agent="Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:89.0) Gecko/20100101 Firefox/89.0",
    )


@pytest.fixture()
def session_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "sessions"
    directory.mkdir()
    return directory
