"""Redis session store.

Implements the cache protocol of :mod:`session_store.stores.cache` with
``redis-py``: ``SET ... EX`` for data, ``SET ... NX EX`` for locks and
``EXPIRE`` for refreshes.

Classes
-------
- RedisStore  — Redis key-value session storage
"""
from __future__ import annotations

import logging
from typing import Any

import redis
from redis.exceptions import AuthenticationError, RedisError, ResponseError

from session_store.config import RedisConfig
from session_store.stores.cache import CacheStore


class RedisStore(CacheStore):
    """Persists sessions as expiring Redis strings.

    Parameters
    ----------
    config:
        A :class:`~session_store.config.RedisConfig` or equivalent mapping.
    connection:
        Optional ``redis.Redis`` client (must not decode responses).
    """

    driver = "redis"
    config_class = RedisConfig
    backend_errors = (RedisError,)

    def _connect(self) -> redis.Redis:
        config = self._config
        return redis.Redis(
            host=config.host,
            port=config.port,
            db=config.database or 0,
            password=config.password.get_secret_value() if config.password else None,
            socket_timeout=config.timeout,
            socket_connect_timeout=config.timeout,
        )

    def _ping(self, backend: Any) -> None:
        backend.ping()

    def _describe_connect_error(self, exc: Exception) -> str:
        config = self._config
        if isinstance(exc, AuthenticationError):
            return "Authentication failed"
        if isinstance(exc, ResponseError) and config.database is not None:
            return f"Could not select the database '{config.database}': {exc}"
        return f"Could not connect to server {config.host}:{config.port}"

    def _disconnect(self) -> None:
        self._backend.close()

    def _get(self, key: str) -> bytes | None:
        return self._backend.get(key)

    def _set(self, key: str, value: bytes, ttl: int) -> bool:
        return bool(self._backend.set(key, value, ex=ttl))

    def _add(self, key: str, value: bytes, ttl: int) -> bool:
        return bool(self._backend.set(key, value, ex=ttl, nx=True))

    def _expire(self, key: str, ttl: int) -> bool:
        return bool(self._backend.expire(key, ttl))

    def _delete(self, key: str) -> bool:
        return self._backend.delete(key) > 0

    def _take_over_stuck_lock(self, lock_key: str, value: bytes, ttl: int) -> bool:
        if self._backend.ttl(lock_key) != -1:
            return False
        self._log(f"Lock {lock_key} had no TTL", logging.DEBUG)
        return bool(self._backend.set(lock_key, value, ex=ttl))

    def __repr__(self) -> str:
        return (
            f"RedisStore(host={self._config.host!r}, port={self._config.port!r}, "
            f"prefix={self._config.prefix!r})"
        )
