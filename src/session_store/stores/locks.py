"""Server-side named locks used by the database store.

The lock has to live in the database server so that every process
sharing the session table sees it.  Each supported SQL dialect gets its
own strategy:

- MySQL / MariaDB — ``GET_LOCK`` / ``RELEASE_LOCK`` (blocking, with timeout)
- PostgreSQL      — ``pg_try_advisory_lock`` on ``hashtext(name)``, polled
- SQLite          — a row in a ``<table>_locks`` table, polled; rows older
  than the stale age are taken over

All strategies run on the connection that holds the lock and expect it
to be in autocommit mode.

Classes
-------
- NamedLock             — abstract strategy
- MySQLNamedLock        — GET_LOCK based
- PostgresAdvisoryLock  — advisory lock based
- SQLiteTableLock       — lock-row based

Functions
---------
- named_lock_for        — pick the strategy for a SQLAlchemy backend name
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from sqlalchemy import Column, Float, MetaData, String, Table, delete, insert, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from session_store.errors import ConfigurationError


class NamedLock(ABC):
    """Acquire and release a lock identified by a name.

    Parameters
    ----------
    timeout:
        Seconds to wait before giving up on an acquisition.
    sleep:
        Poll interval for strategies without a blocking primitive.
    """

    def __init__(self, timeout: float, sleep: float) -> None:
        self.timeout = timeout
        self.sleep = sleep

    def prepare(self, connection: Connection) -> None:
        """Create whatever server-side objects the strategy needs."""

    @abstractmethod
    def acquire(self, connection: Connection, name: str) -> bool:
        """Return True once the lock ``name`` is held by ``connection``."""

    @abstractmethod
    def release(self, connection: Connection, name: str) -> bool:
        """Release ``name``.  Returns False if it was not held."""

    def _poll(self, attempt: Callable[[], bool]) -> bool:
        deadline = time.monotonic() + self.timeout
        while True:
            if attempt():
                return True
            if time.monotonic() + self.sleep > deadline:
                return False
            time.sleep(self.sleep)


class MySQLNamedLock(NamedLock):
    """``GET_LOCK`` named locks (MySQL 5.7+, MariaDB)."""

    def acquire(self, connection: Connection, name: str) -> bool:
        locked = connection.execute(
            text("SELECT GET_LOCK(:name, :timeout)"),
            {"name": name, "timeout": self.timeout},
        ).scalar()
        return locked == 1

    def release(self, connection: Connection, name: str) -> bool:
        released = connection.execute(
            text("SELECT RELEASE_LOCK(:name)"), {"name": name}
        ).scalar()
        return released == 1


class PostgresAdvisoryLock(NamedLock):
    """Session-level advisory locks keyed by ``hashtext(name)``."""

    def acquire(self, connection: Connection, name: str) -> bool:
        statement = text("SELECT pg_try_advisory_lock(hashtext(:name))")
        return self._poll(lambda: bool(connection.execute(statement, {"name": name}).scalar()))

    def release(self, connection: Connection, name: str) -> bool:
        released = connection.execute(
            text("SELECT pg_advisory_unlock(hashtext(:name))"), {"name": name}
        ).scalar()
        return bool(released)


class SQLiteTableLock(NamedLock):
    """Lock rows in a dedicated table, for SQLite which has no named locks.

    Parameters
    ----------
    table_name:
        Name of the lock table.
    stale_after:
        Seconds after which a lock row is considered abandoned by a
        crashed holder and may be taken over.
    """

    def __init__(self, timeout: float, sleep: float, table_name: str, stale_after: float) -> None:
        super().__init__(timeout, sleep)
        self.stale_after = stale_after
        self.table = Table(
            table_name,
            MetaData(),
            Column("name", String(64), primary_key=True),
            Column("acquired_at", Float, nullable=False),
        )

    def prepare(self, connection: Connection) -> None:
        self.table.create(connection, checkfirst=True)

    def acquire(self, connection: Connection, name: str) -> bool:
        return self._poll(lambda: self._try_acquire(connection, name))

    def _try_acquire(self, connection: Connection, name: str) -> bool:
        now = time.time()
        connection.execute(
            delete(self.table).where(
                self.table.c.name == name,
                self.table.c.acquired_at < now - self.stale_after,
            )
        )
        try:
            connection.execute(insert(self.table).values(name=name, acquired_at=now))
        except IntegrityError:
            return False
        return True

    def release(self, connection: Connection, name: str) -> bool:
        result = connection.execute(delete(self.table).where(self.table.c.name == name))
        return result.rowcount == 1


def named_lock_for(
    backend: str,
    *,
    timeout: float,
    sleep: float,
    table_name: str,
    stale_after: float,
) -> NamedLock:
    """Return the lock strategy for a SQLAlchemy backend name.

    Raises
    ------
    ConfigurationError
        If the backend has no supported named-lock primitive.
    """
    if backend in ("mysql", "mariadb"):
        return MySQLNamedLock(timeout, sleep)
    if backend == "postgresql":
        return PostgresAdvisoryLock(timeout, sleep)
    if backend == "sqlite":
        return SQLiteTableLock(timeout, sleep, f"{table_name}_locks", stale_after)
    raise ConfigurationError(f"No named lock support for database backend {backend!r}")
