"""Abstract base class and per-cycle state for session stores.

A host drives one store instance through cycles of
``open → read → write | destroy → close``.  Every driver implements the
same contract, so the host never needs to know which backend it talks to.

Operational failures (backend unreachable, lock contention, missing
records) are logged and reported through return values.  Only contract
violations raise, see :class:`~session_store.errors.SessionStateError`.

Classes
-------
- Phase         — lifecycle phase of a store instance
- CycleState    — identifier, lock token and fingerprint of the cycle
- SessionStore  — abstract base for all drivers
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from pydantic import ValidationError

from session_store.client import ClientContext
from session_store.config import StoreConfig
from session_store.errors import ConfigurationError, SessionStateError
from session_store.fingerprint import make_fingerprint


class Phase(str, Enum):
    """Lifecycle phase of a store instance."""

    UNOPENED = "unopened"
    OPEN = "open"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    CLOSED = "closed"


@dataclass
class CycleState:
    """Mutable state of one open/close cycle.

    Owned by exactly one store instance and never shared.

    Attributes
    ----------
    phase:
        Current lifecycle phase.
    session_id:
        Identifier the held (or last held) lock belongs to.
    record_exists:
        True when the backend is known to hold a record for ``session_id``.
    fingerprint:
        Fingerprint of the bytes believed to be persisted, or None when
        unknown.  A None fingerprint never matches any payload.
    lock_token:
        Driver-specific lock handle, or None when no lock is held.
    destroyed:
        True once ``session_id`` was destroyed by this instance and not
        locked again since.
    """

    phase: Phase = Phase.UNOPENED
    session_id: str | None = None
    record_exists: bool = False
    fingerprint: str | None = None
    lock_token: Any = None
    destroyed: bool = False

    @property
    def locked(self) -> bool:
        return self.lock_token is not None

    @property
    def is_open(self) -> bool:
        return self.phase in (Phase.OPEN, Phase.LOCKED, Phase.UNLOCKED)

    def remember(self, data: bytes) -> None:
        """Record ``data`` as the payload currently persisted."""
        self.fingerprint = make_fingerprint(data)

    def is_unchanged(self, data: bytes) -> bool:
        """Return True if ``data`` matches the remembered fingerprint."""
        return self.fingerprint is not None and self.fingerprint == make_fingerprint(data)

    def forget_record(self) -> None:
        self.record_exists = False
        self.fingerprint = None

    def record_destroyed(self) -> None:
        self.forget_record()
        self.destroyed = True

    def holds(self, session_id: str) -> bool:
        """Return True if the lock of ``session_id`` is currently held."""
        return self.locked and self.session_id == session_id

    def acquired(self, session_id: str, token: Any) -> None:
        self.session_id = session_id
        self.lock_token = token
        self.destroyed = False
        self.phase = Phase.LOCKED

    def released(self) -> None:
        self.lock_token = None
        if self.phase is Phase.LOCKED:
            self.phase = Phase.UNLOCKED

    def start(self) -> None:
        """Begin a new cycle, discarding everything from the previous one."""
        self.session_id = None
        self.lock_token = None
        self.destroyed = False
        self.forget_record()
        self.phase = Phase.OPEN

    def finish(self) -> None:
        self.lock_token = None
        self.record_exists = False
        self.phase = Phase.CLOSED


class SessionStore(ABC):
    """Contract shared by every session store driver.

    Subclasses set :attr:`driver` and :attr:`config_class` and implement
    the abstract operations.  A store instance serves one request cycle at
    a time and is not thread-safe.

    Parameters
    ----------
    config:
        A validated config model or a mapping accepted by
        :attr:`config_class`.
    client:
        Client attributes used for match-IP / match-UA binding.
    logger:
        Logger receiving failure messages.  Defaults to this module's
        logger, which is silent unless the host configures logging.

    Raises
    ------
    ConfigurationError
        If ``config`` is a mapping that does not validate.
    """

    driver: ClassVar[str] = "base"
    config_class: ClassVar[type[StoreConfig]] = StoreConfig

    def __init__(
        self,
        config: StoreConfig | Mapping[str, Any],
        *,
        client: ClientContext | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = self._coerce_config(config)
        self.client = client if client is not None else ClientContext()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._state = CycleState()

    @classmethod
    def _coerce_config(cls, config: StoreConfig | Mapping[str, Any]) -> Any:
        if isinstance(config, cls.config_class):
            return config
        if isinstance(config, StoreConfig):
            raise ConfigurationError(
                f"{cls.__name__} requires {cls.config_class.__name__}, "
                f"got {type(config).__name__}"
            )
        try:
            return cls.config_class.model_validate(dict(config))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid {cls.driver} session config: {exc}") from exc

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> Any:
        """The immutable driver configuration."""
        return self._config

    @property
    def state(self) -> CycleState:
        """The state of the current cycle (read-only by convention)."""
        return self._state

    def describe_config(self) -> dict[str, Any]:
        """Return the driver name and its settings, secrets masked."""
        return {"driver": self.driver, **self._config.describe()}

    def validate_id(self, session_id: str) -> bool:
        """Return True if ``session_id`` satisfies the configured policy."""
        return self._config.id_policy.matches(session_id)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _log(self, message: str, level: int = logging.ERROR) -> None:
        self._logger.log(level, "Session (%s): %s", self.driver, message)

    def _key_suffix(self) -> str:
        return self.client.key_suffix(self._config.match_ip, self._config.match_ua)

    def _ensure_open(self, operation: str) -> bool:
        if self._state.is_open:
            return True
        self._log(f"Cannot {operation} while the store is {self._state.phase.value}")
        return False

    def _acquire(self, session_id: str) -> bool:
        """Hold the lock for ``session_id``, releasing a lock on another id.

        Switching identifiers, or failing to lock, resets the record flag
        and the fingerprint.
        """
        state = self._state
        if session_id != state.session_id:
            if state.locked and not self._unlock():
                return False
            state.forget_record()
        if self._lock(session_id):
            return True
        state.forget_record()
        return False

    def _require_lock(self, operation: str, session_id: str) -> None:
        """Raise unless the lock of ``session_id`` is held.

        Repeating an operation on an identifier this instance just
        destroyed is allowed.
        """
        state = self._state
        if state.holds(session_id) or (state.destroyed and state.session_id == session_id):
            return
        raise SessionStateError(
            operation, f"the lock of {session_id} is not held (store is {state.phase.value})"
        )

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> SessionStore:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    def open(self, path: str = "", name: str = "") -> bool:
        """Prepare the backend for a new cycle.

        Idempotent.  Returns False (after logging) when the backend is
        unusable for this cycle.
        """

    @abstractmethod
    def read(self, session_id: str) -> bytes:
        """Lock ``session_id`` and return its payload.

        Returns ``b""`` when there is no record or the lock could not be
        acquired; in the latter case ``state.record_exists`` stays False.
        """

    @abstractmethod
    def write(self, session_id: str, data: bytes) -> bool:
        """Persist ``data`` for ``session_id``.

        Unchanged payloads of existing records only refresh the record's
        timestamp.
        """

    @abstractmethod
    def refresh_timestamp(self, session_id: str, data: bytes) -> bool:
        """Mark the record as alive without requiring a held lock."""

    @abstractmethod
    def close(self) -> bool:
        """Release the lock and the backend handle.  Safe to repeat."""

    @abstractmethod
    def destroy(self, session_id: str) -> bool:
        """Remove the record of ``session_id``.

        Raises
        ------
        SessionStateError
            If this instance does not hold the lock of ``session_id``.
        """

    @abstractmethod
    def gc(self, max_lifetime: int) -> int | None:
        """Delete records older than ``max_lifetime`` seconds.

        Returns the number of deleted records, or None if the sweep could
        not run.
        """

    @abstractmethod
    def _lock(self, session_id: str) -> bool:
        """Acquire the backend lock for ``session_id``.

        Must succeed immediately when the lock for ``session_id`` is
        already held by this instance.
        """

    @abstractmethod
    def _unlock(self) -> bool:
        """Release the held lock.  Returns True when nothing is held."""
