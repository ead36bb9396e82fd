"""Session store drivers.

All drivers implement the ``SessionStore`` contract.

Public surface
--------------
- SessionStore    — abstract base class
- CycleState      — per-cycle state owned by one store instance
- Phase           — lifecycle phase enum
- FilesStore      — locked files in a sharded directory tree
- DatabaseStore   — SQL rows guarded by server-side named locks
- RedisStore      — expiring Redis keys with lock keys
- MemcachedStore  — expiring Memcached items with lock items
"""
from __future__ import annotations

from session_store.stores.base import CycleState, Phase, SessionStore
from session_store.stores.database import DatabaseStore
from session_store.stores.files import FilesStore
from session_store.stores.memcached import MemcachedStore
from session_store.stores.redis import RedisStore

__all__ = [
    "CycleState",
    "DatabaseStore",
    "FilesStore",
    "MemcachedStore",
    "Phase",
    "RedisStore",
    "SessionStore",
]
