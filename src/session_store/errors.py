"""Exception hierarchy for session stores.

Operational failures (unreachable backend, lock contention, missing rows)
are never raised across the store contract; stores log them and return
``False`` or an empty payload.  The exceptions here signal programming
errors only.

Classes
-------
- SessionStoreError   — base class
- ConfigurationError  — invalid store configuration at construction time
- SessionStateError   — an operation invoked in a state that forbids it
"""
from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for all errors raised by :mod:`session_store`."""


class ConfigurationError(SessionStoreError, ValueError):
    """Raised when a store configuration is missing or malformed."""


class SessionStateError(SessionStoreError, RuntimeError):
    """Raised when an operation violates the store's lifecycle contract.

    Parameters
    ----------
    operation:
        Name of the offending operation (``"destroy"``, ``"unlock"``...).
    reason:
        Human-readable explanation.
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: {reason}")
