"""Shared protocol of the key-value cache stores (Redis, Memcached).

A session lives under ``<prefix><id>[<client digest>]`` with a TTL of
``max_lifetime``.  Its lock lives under the same key plus ``:lock`` with
a TTL of ``lock_ttl`` and holds the acquisition time of its owner plus a
random owner token.

Locking is cooperative: an instance retries up to ``lock_attempts`` times,
sleeping ``lock_sleep`` seconds between tries.  A held lock is refreshed
on every read and write of the same identifier, so it stays alive across
a long request.  Expiry is passive, hence :meth:`CacheStore.gc` is a
no-op.

Classes
-------
- CacheStore  — protocol implementation over abstract key primitives
"""
from __future__ import annotations

import logging
import secrets
import time
from abc import abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

from session_store.client import ClientContext
from session_store.config import CacheConfig
from session_store.stores.base import SessionStore


class CacheStore(SessionStore):
    """Base for stores backed by an expiring key-value cache.

    Subclasses provide the client factory and the key primitives below.

    Parameters
    ----------
    config:
        A :class:`~session_store.config.CacheConfig` subclass instance or
        an equivalent mapping.
    client / logger:
        See :class:`~session_store.stores.base.SessionStore`.
    connection:
        Optional pre-built cache client.  It is reused by every
        :meth:`open` instead of building one from the config.
    """

    config_class: ClassVar[type[CacheConfig]] = CacheConfig
    backend_errors: ClassVar[tuple[type[Exception], ...]] = ()

    def __init__(
        self,
        config: CacheConfig | Mapping[str, Any],
        *,
        client: ClientContext | None = None,
        logger: logging.Logger | None = None,
        connection: Any = None,
    ) -> None:
        super().__init__(config, client=client, logger=logger)
        self._given_connection = connection
        self._backend: Any = None
        self._lock_value: bytes | None = None

    # ------------------------------------------------------------------
    # Primitives implemented by each backend
    # ------------------------------------------------------------------

    @abstractmethod
    def _connect(self) -> Any:
        """Build a client from the config."""

    @abstractmethod
    def _ping(self, backend: Any) -> None:
        """Raise one of :attr:`backend_errors` if ``backend`` is unusable."""

    def _describe_connect_error(self, exc: Exception) -> str:
        return f"Could not connect: {exc}"

    @abstractmethod
    def _disconnect(self) -> None:
        """Release the client's connections."""

    @abstractmethod
    def _get(self, key: str) -> bytes | None:
        """Return the value at ``key`` or None."""

    @abstractmethod
    def _set(self, key: str, value: bytes, ttl: int) -> bool:
        """Store ``value`` at ``key`` unconditionally."""

    @abstractmethod
    def _add(self, key: str, value: bytes, ttl: int) -> bool:
        """Store ``value`` only if ``key`` does not exist."""

    @abstractmethod
    def _expire(self, key: str, ttl: int) -> bool:
        """Reset the TTL of ``key``.  False if the key does not exist."""

    @abstractmethod
    def _delete(self, key: str) -> bool:
        """Delete ``key``.  False if the key did not exist."""

    def _take_over_stuck_lock(self, lock_key: str, value: bytes, ttl: int) -> bool:
        """Replace a foreign lock that can never expire.  Not needed by default."""
        return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key(self, session_id: str) -> str:
        return f"{self._config.prefix}{session_id}{self._key_suffix()}"

    def _lock_key(self, session_id: str) -> str:
        return f"{self._key(session_id)}:lock"

    def _owns_lock(self, lock_key: str) -> bool:
        return self._lock_value is not None and self._get(lock_key) == self._lock_value

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    def open(self, path: str = "", name: str = "") -> bool:
        if self._backend is not None:
            return True
        try:
            backend = self._given_connection if self._given_connection is not None else self._connect()
            self._ping(backend)
        except self.backend_errors as exc:
            self._log(self._describe_connect_error(exc))
            return False
        self._backend = backend
        self._state.start()
        return True

    def read(self, session_id: str) -> bytes:
        if not self._ensure_open("read") or not self._acquire(session_id):
            return b""
        state = self._state
        try:
            data = self._get(self._key(session_id))
        except self.backend_errors as exc:
            self._log(f"Unable to read {session_id}: {exc}")
            return b""
        state.record_exists = data is not None
        data = bytes(data) if data is not None else b""
        state.remember(data)
        return data

    def write(self, session_id: str, data: bytes) -> bool:
        if not self._ensure_open("write"):
            return False
        # Holding the lock already refreshes its TTL.
        if not self._acquire(session_id):
            return False
        state = self._state
        key = self._key(session_id)
        ttl = self._config.max_lifetime
        try:
            if state.record_exists and state.is_unchanged(data) and self._expire(key, ttl):
                return True
            if not self._set(key, data, ttl):
                self._log(f"Unable to write {key}")
                return False
        except self.backend_errors as exc:
            self._log(f"Unable to write {key}: {exc}")
            return False
        state.remember(data)
        state.record_exists = True
        return True

    def refresh_timestamp(self, session_id: str, data: bytes) -> bool:
        if not self._ensure_open("refresh"):
            return False
        key = self._key(session_id)
        ttl = self._config.max_lifetime
        try:
            return self._expire(key, ttl) or self._set(key, data, ttl)
        except self.backend_errors as exc:
            self._log(f"Unable to refresh {key}: {exc}")
            return False

    def close(self) -> bool:
        if self._backend is not None:
            if self._state.locked:
                self._unlock()
            try:
                self._disconnect()
            except self.backend_errors as exc:
                self._log(f"Got {type(exc).__name__} on close: {exc}", logging.WARNING)
            self._backend = None
        self._state.finish()
        return True

    def destroy(self, session_id: str) -> bool:
        self._require_lock("destroy", session_id)
        try:
            deleted = self._delete(self._key(session_id))
        except self.backend_errors as exc:
            self._log(f"Unable to destroy {session_id}: {exc}")
            return False
        if not deleted:
            self._log("Expected to delete 1 key, deleted 0", logging.DEBUG)
        self._state.record_destroyed()
        return True

    def gc(self, max_lifetime: int) -> int | None:
        return 0

    def _lock(self, session_id: str) -> bool:
        state = self._state
        ttl = self._config.lock_ttl
        try:
            if state.locked:
                if state.session_id == session_id and self._owns_lock(state.lock_token):
                    return self._expire(state.lock_token, ttl)
                # Our lock expired and may belong to someone else by now.
                state.released()
                state.forget_record()
                self._lock_value = None
            lock_key = self._lock_key(session_id)
            value = f"{time.time():.6f}:{secrets.token_hex(8)}".encode()
            attempts = self._config.lock_attempts
            for attempt in range(1, attempts + 1):
                if self._add(lock_key, value, ttl) or self._take_over_stuck_lock(lock_key, value, ttl):
                    self._lock_value = value
                    state.acquired(session_id, lock_key)
                    return True
                if attempt < attempts:
                    time.sleep(self._config.lock_sleep)
        except self.backend_errors as exc:
            self._log(f"Error while trying to lock {session_id}: {exc}")
            return False
        self._log(f"Unable to lock {lock_key} after {attempts} attempts")
        return False

    def _unlock(self) -> bool:
        lock_key = self._state.lock_token
        if lock_key is None:
            return True
        try:
            if self._owns_lock(lock_key):
                self._delete(lock_key)
            else:
                self._log(f"Lock {lock_key} expired before it was released", logging.DEBUG)
        except self.backend_errors as exc:
            self._log(f"Error while trying to unlock {lock_key}: {exc}")
            return False
        self._lock_value = None
        self._state.released()
        return True
