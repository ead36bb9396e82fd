"""Memcached session store.

Implements the cache protocol of :mod:`session_store.stores.cache` with
``pymemcache``.  Locks are taken with ``add`` (store-if-absent) and
refreshed with ``touch``.  Memcached reads expirations above 30 days as
absolute Unix timestamps, so longer TTLs are converted.

NOTE: Memcached keys are limited to 250 bytes; keep prefixes short.

Classes
-------
- MemcachedStore  — Memcached key-value session storage
"""
from __future__ import annotations

import logging
import time
from typing import Any

from pymemcache.client.hash import HashClient
from pymemcache.exceptions import MemcacheError

from session_store.config import MemcachedConfig
from session_store.stores.cache import CacheStore

_RELATIVE_EXPIRATION_LIMIT = 60 * 60 * 24 * 30
_PING_KEY = "session_store:ping"


class MemcachedStore(CacheStore):
    """Persists sessions as expiring Memcached items.

    Parameters
    ----------
    config:
        A :class:`~session_store.config.MemcachedConfig` or equivalent mapping.
    connection:
        Optional pymemcache client (``Client`` or ``HashClient``).
    """

    driver = "memcached"
    config_class = MemcachedConfig
    backend_errors = (MemcacheError, OSError)

    def _server_pool(self) -> list[tuple[str, int]]:
        pool: list[tuple[str, int]] = []
        for server in self._config.servers:
            if (server.host, server.port) in pool:
                self._log(f"Server pool already has {server.address}", logging.DEBUG)
                continue
            pool.append((server.host, server.port))
        return pool

    @staticmethod
    def _expiration(seconds: int) -> int:
        if seconds > _RELATIVE_EXPIRATION_LIMIT:
            return int(time.time()) + seconds
        return seconds

    def _connect(self) -> HashClient:
        config = self._config
        return HashClient(
            self._server_pool(),
            connect_timeout=config.connect_timeout,
            timeout=config.timeout,
            use_pooling=False,
            ignore_exc=False,
        )

    def _ping(self, backend: Any) -> None:
        backend.get(f"{self._config.prefix}{_PING_KEY}")

    def _describe_connect_error(self, exc: Exception) -> str:
        return f"Could not connect to any server: {exc}"

    def _disconnect(self) -> None:
        self._backend.close()

    def _get(self, key: str) -> bytes | None:
        return self._backend.get(key)

    def _set(self, key: str, value: bytes, ttl: int) -> bool:
        return bool(self._backend.set(key, value, expire=self._expiration(ttl), noreply=False))

    def _add(self, key: str, value: bytes, ttl: int) -> bool:
        return bool(self._backend.add(key, value, expire=self._expiration(ttl), noreply=False))

    def _expire(self, key: str, ttl: int) -> bool:
        return bool(self._backend.touch(key, expire=self._expiration(ttl), noreply=False))

    def _delete(self, key: str) -> bool:
        return bool(self._backend.delete(key, noreply=False))

    def __repr__(self) -> str:
        servers = ", ".join(server.address for server in self._config.servers)
        return f"MemcachedStore(servers=[{servers}], prefix={self._config.prefix!r})"
