"""Driver registry and store factory.

Functions
---------
- create_store  — build a store from a driver name and its settings
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from session_store.config import StoreConfig
from session_store.errors import ConfigurationError
from session_store.stores.base import SessionStore
from session_store.stores.database import DatabaseStore
from session_store.stores.files import FilesStore
from session_store.stores.memcached import MemcachedStore
from session_store.stores.redis import RedisStore

DRIVERS: dict[str, type[SessionStore]] = {
    FilesStore.driver: FilesStore,
    DatabaseStore.driver: DatabaseStore,
    RedisStore.driver: RedisStore,
    MemcachedStore.driver: MemcachedStore,
}


def create_store(
    driver: str,
    config: StoreConfig | Mapping[str, Any],
    **options: Any,
) -> SessionStore:
    """Instantiate the store registered under ``driver``.

    Parameters
    ----------
    driver:
        ``"files"``, ``"database"``, ``"redis"`` or ``"memcached"``.
    config:
        The driver's config model or an equivalent mapping.
    **options:
        Extra keyword arguments for the store constructor (``client``,
        ``logger``, ``engine``, ``connection``, ``owner_id``...).

    Raises
    ------
    ConfigurationError
        If ``driver`` is unknown or ``config`` is invalid.
    """
    try:
        store_class = DRIVERS[driver]
    except KeyError:
        raise ConfigurationError(
            f"Unknown session driver {driver!r}; expected one of {sorted(DRIVERS)}"
        ) from None
    return store_class(config, **options)
