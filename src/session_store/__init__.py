"""session-store — locking session save handlers for pluggable backends.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import session_store
>>> session_store.__version__
'0.1.0'
"""
from __future__ import annotations

import logging

from session_store.client import ClientContext
from session_store.config import (
    CacheConfig,
    ColumnNames,
    DatabaseConfig,
    FilesConfig,
    MemcachedConfig,
    MemcachedServer,
    RedisConfig,
    SessionIdPolicy,
    StoreConfig,
    load_config,
)
from session_store.errors import ConfigurationError, SessionStateError, SessionStoreError
from session_store.factory import DRIVERS, create_store
from session_store.fingerprint import make_digest, make_fingerprint
from session_store.stores import (
    CycleState,
    DatabaseStore,
    FilesStore,
    MemcachedStore,
    Phase,
    RedisStore,
    SessionStore,
)

# Stores stay silent unless the host configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Contract
    "SessionStore",
    "CycleState",
    "Phase",
    "ClientContext",
    # Drivers
    "FilesStore",
    "DatabaseStore",
    "RedisStore",
    "MemcachedStore",
    "DRIVERS",
    "create_store",
    # Configuration
    "StoreConfig",
    "SessionIdPolicy",
    "FilesConfig",
    "ColumnNames",
    "DatabaseConfig",
    "CacheConfig",
    "RedisConfig",
    "MemcachedServer",
    "MemcachedConfig",
    "load_config",
    # Errors
    "SessionStoreError",
    "ConfigurationError",
    "SessionStateError",
    # Utilities
    "make_fingerprint",
    "make_digest",
]
