"""Payload fingerprints and fixed-length digests.

Fingerprints let a store detect that a payload is unchanged since it was
last read or written, so the backend can skip rewriting it and only bump
the record's timestamp.

Functions
---------
- make_fingerprint  — hash of a payload, compared between read and write
- make_digest       — fixed-length hex digest of a text key
"""
from __future__ import annotations

import hashlib

_FINGERPRINT_SIZE = 16
_DIGEST_SIZE = 20


def make_fingerprint(data: bytes) -> str:
    """Return the fingerprint of ``data``.

    Parameters
    ----------
    data:
        Raw payload bytes.  Empty payloads have a well-defined fingerprint.

    Returns
    -------
    str
        32-character lowercase hex string.
    """
    return hashlib.blake2b(data, digest_size=_FINGERPRINT_SIZE).hexdigest()


def make_digest(text: str) -> str:
    """Return a 40-character hex digest of ``text`` (UTF-8 encoded)."""
    return hashlib.blake2b(text.encode("utf-8"), digest_size=_DIGEST_SIZE).hexdigest()
