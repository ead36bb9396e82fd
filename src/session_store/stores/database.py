"""Relational database session store.

Stores one row per session in a configurable table through SQLAlchemy
Core.  A typical MySQL schema with the default names is::

    CREATE TABLE `Sessions` (
        `id` varchar(128) NOT NULL,
        `timestamp` timestamp NOT NULL,
        `data` blob NOT NULL,
        `ip` varchar(45) NOT NULL,       -- optional
        `ua` varchar(255) NOT NULL,      -- optional
        `user_id` varchar(64) NULL,      -- optional
        PRIMARY KEY (`id`),
        KEY `timestamp` (`timestamp`),
        KEY `ip` (`ip`),                 -- optional
        KEY `ua` (`ua`),                 -- optional
        KEY `user_id` (`user_id`)        -- optional
    );

:meth:`DatabaseStore.create_schema` creates an equivalent table on any
supported backend.  Timestamps are naive UTC datetimes computed by the
client so that every dialect compares them the same way.

Classes
-------
- DatabaseStore  — row-per-session storage guarded by server-side named locks
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from session_store.client import ClientContext
from session_store.config import DatabaseConfig
from session_store.fingerprint import make_digest
from session_store.stores.base import SessionStore
from session_store.stores.locks import NamedLock, named_lock_for


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DatabaseStore(SessionStore):
    """Persists sessions as rows of a SQL table.

    Parameters
    ----------
    config:
        A :class:`~session_store.config.DatabaseConfig` or equivalent mapping.
    client / logger:
        See :class:`~session_store.stores.base.SessionStore`.
    engine:
        Optional pre-built SQLAlchemy engine.  When omitted an engine is
        created from ``config.url`` on the first :meth:`open`.
    owner_id:
        Callable returning the current owner (e.g. the logged-in user id),
        stored on every write when ``save_owner_id`` is enabled.

    Raises
    ------
    ConfigurationError
        If the URL's backend has no named-lock support.
    """

    driver = "database"
    config_class = DatabaseConfig

    def __init__(
        self,
        config: DatabaseConfig | Mapping[str, Any],
        *,
        client: ClientContext | None = None,
        logger: logging.Logger | None = None,
        engine: Engine | None = None,
        owner_id: Callable[[], Any] | None = None,
    ) -> None:
        super().__init__(config, client=client, logger=logger)
        self._engine = engine
        self._connection: Connection | None = None
        self._owner_id = owner_id
        self._table = self._build_table()
        backend = engine.dialect.name if engine is not None else make_url(self._config.url).get_backend_name()
        self._named_lock: NamedLock = named_lock_for(
            backend,
            timeout=self._config.lock_timeout,
            sleep=self._config.lock_sleep,
            table_name=self._config.table,
            stale_after=max(self._config.lock_timeout, self._config.max_lifetime),
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _build_table(self) -> Table:
        config = self._config
        names = config.columns
        # Client-bound records share an id across clients, so the binding
        # columns join the primary key.
        columns = [
            Column(names.id, String(128), primary_key=True),
            Column(names.timestamp, DateTime, nullable=False, index=True),
            Column(names.data, LargeBinary, nullable=False),
        ]
        if config.match_ip or config.save_ip:
            columns.append(
                Column(names.ip, String(45), nullable=False, index=True, primary_key=config.match_ip)
            )
        if config.match_ua or config.save_ua:
            columns.append(
                Column(names.ua, String(255), nullable=False, index=True, primary_key=config.match_ua)
            )
        if config.save_owner_id:
            columns.append(Column(names.owner_id, String(64), nullable=True, index=True))
        return Table(config.table, MetaData(), *columns)

    @property
    def table(self) -> Table:
        """The SQLAlchemy table this store reads and writes."""
        return self._table

    def create_schema(self) -> None:
        """Create the session table (and lock table, if any) when missing."""
        engine = self._get_engine()
        self._table.metadata.create_all(engine)
        with engine.connect() as connection:
            self._named_lock.prepare(connection)
            connection.commit()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(self._config.url)
        return self._engine

    def _connect(self) -> Connection:
        connection = self._get_engine().connect().execution_options(isolation_level="AUTOCOMMIT")
        try:
            self._named_lock.prepare(connection)
        except Exception:
            connection.close()
            raise
        return connection

    def _column(self, key: str) -> Column:
        return self._table.c[getattr(self._config.columns, key)]

    def _where(self, session_id: str) -> list[Any]:
        """Predicates selecting the row of ``session_id`` for this client."""
        clauses = [self._column("id") == session_id]
        if self._config.match_ip:
            clauses.append(self._column("ip") == self.client.ip)
        if self._config.match_ua:
            clauses.append(self._column("ua") == self.client.user_agent)
        return clauses

    def _lock_name(self, session_id: str) -> str:
        binding = self.client.binding(self._config.match_ip, self._config.match_ua)
        return make_digest(f"{self._config.table}:{session_id}{binding}")

    def _owner_value(self) -> str | None:
        value = self._owner_id() if self._owner_id is not None else None
        return None if value is None else str(value)

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    def open(self, path: str = "", name: str = "") -> bool:
        if self._connection is not None:
            return True
        try:
            self._connection = self._connect()
        except SQLAlchemyError as exc:
            self._log(f"Thrown a {type(exc).__name__} while trying to open: {exc}")
            return False
        self._state.start()
        return True

    def read(self, session_id: str) -> bytes:
        state = self._state
        if not self._ensure_open("read") or not self._acquire(session_id):
            state.remember(b"")
            return b""
        statement = select(self._column("data")).where(*self._where(session_id)).limit(1)
        try:
            row = self._connection.execute(statement).first()
        except SQLAlchemyError as exc:
            self._log(f"Unable to read {session_id}: {exc}")
            state.remember(b"")
            return b""
        state.record_exists = row is not None
        data = bytes(row[0]) if row is not None else b""
        state.remember(data)
        return data

    def write(self, session_id: str, data: bytes) -> bool:
        if not self._ensure_open("write"):
            return False
        if not self._acquire(session_id):
            return False
        try:
            if self._state.record_exists:
                return self._write_update(session_id, data)
            return self._write_insert(session_id, data)
        except SQLAlchemyError as exc:
            self._log(f"Unable to write {session_id}: {exc}")
            return False

    def _write_insert(self, session_id: str, data: bytes) -> bool:
        config = self._config
        names = config.columns
        values: dict[str, Any] = {
            names.id: session_id,
            names.timestamp: _utcnow(),
            names.data: data,
        }
        if config.match_ip or config.save_ip:
            values[names.ip] = self.client.ip
        if config.match_ua or config.save_ua:
            values[names.ua] = self.client.user_agent
        if config.save_owner_id:
            values[names.owner_id] = self._owner_value()
        result = self._connection.execute(insert(self._table).values(values))
        if result.rowcount == 0:
            return False
        self._state.remember(data)
        self._state.record_exists = True
        return True

    def _write_update(self, session_id: str, data: bytes) -> bool:
        names = self._config.columns
        values: dict[str, Any] = {names.timestamp: _utcnow()}
        if not self._state.is_unchanged(data):
            values[names.data] = data
        if self._config.save_owner_id:
            values[names.owner_id] = self._owner_value()
        self._connection.execute(
            update(self._table).where(*self._where(session_id)).values(values)
        )
        self._state.remember(data)
        return True

    def refresh_timestamp(self, session_id: str, data: bytes) -> bool:
        if not self._ensure_open("refresh"):
            return False
        statement = (
            update(self._table)
            .where(*self._where(session_id))
            .values({self._config.columns.timestamp: _utcnow()})
        )
        try:
            self._connection.execute(statement)
        except SQLAlchemyError as exc:
            self._log(f"Unable to refresh {session_id}: {exc}")
            return False
        return True

    def close(self) -> bool:
        closed = True
        if self._state.locked and not self._unlock():
            closed = False
        if self._connection is not None:
            try:
                self._connection.close()
            except SQLAlchemyError as exc:
                self._log(f"Error while closing the connection: {exc}", logging.WARNING)
            self._connection = None
        self._state.finish()
        return closed

    def destroy(self, session_id: str) -> bool:
        self._require_lock("destroy", session_id)
        statement = delete(self._table).where(*self._where(session_id))
        try:
            deleted = self._connection.execute(statement).rowcount
        except SQLAlchemyError as exc:
            self._log(f"Unable to destroy {session_id}: {exc}")
            return False
        if deleted != 1:
            self._log(f"Expected to delete 1 row, deleted {deleted}", logging.DEBUG)
        self._state.record_destroyed()
        return True

    def gc(self, max_lifetime: int) -> int | None:
        cutoff = _utcnow() - timedelta(seconds=max_lifetime)
        statement = delete(self._table).where(self._column("timestamp") < cutoff)
        try:
            if self._connection is not None:
                return self._connection.execute(statement).rowcount
            with self._get_engine().begin() as connection:
                return connection.execute(statement).rowcount
        except SQLAlchemyError as exc:
            self._log(f"Thrown a {type(exc).__name__} while trying to gc: {exc}")
            return None

    def _lock(self, session_id: str) -> bool:
        state = self._state
        if state.locked and state.session_id == session_id:
            return True
        name = self._lock_name(session_id)
        try:
            acquired = self._named_lock.acquire(self._connection, name)
        except SQLAlchemyError as exc:
            self._log(f"Error while trying to lock {session_id}: {exc}")
            return False
        if not acquired:
            self._log(f"Error while trying to lock {session_id}")
            return False
        state.acquired(session_id, name)
        return True

    def _unlock(self) -> bool:
        name = self._state.lock_token
        if name is None:
            return True
        try:
            released = self._named_lock.release(self._connection, name)
        except SQLAlchemyError as exc:
            self._log(f"Error while trying to unlock {name}: {exc}")
            return False
        if not released:
            self._log(f"Error while trying to unlock {name}")
            return False
        self._state.released()
        return True

    def __repr__(self) -> str:
        url = make_url(self._config.url).render_as_string(hide_password=True)
        return f"DatabaseStore(url={url!r}, table={self._config.table!r})"
