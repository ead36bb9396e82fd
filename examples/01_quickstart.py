#!/usr/bin/env python3
"""Example: Quickstart — session-store

Minimal working example: two request cycles against a files store, the
second of which leaves the payload unchanged and only refreshes the
record's timestamp.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install session-store
"""
from __future__ import annotations

import secrets
import tempfile

import session_store
from session_store import ClientContext, FilesConfig, FilesStore


def main() -> None:
    print(f"session-store version: {session_store.__version__}")

    with tempfile.TemporaryDirectory() as tmpdir:
        config = FilesConfig(directory=tmpdir, match_ip=True)
        client = ClientContext(ip="203.0.113.7", user_agent="quickstart/1.0")
        session_id = secrets.token_hex(16)
        print(f"Identifier valid: {FilesStore(config).validate_id(session_id)}")

        # Cycle 1: no record yet, the host starts from an empty payload.
        with FilesStore(config, client=client) as store:
            payload = store.read(session_id)
            print(f"First read: {payload!r} (exists={store.state.record_exists})")
            store.write(session_id, b'cart|a:1:{i:0;s:4:"book";}')

        # Cycle 2: same payload, so only the timestamp is refreshed.
        with FilesStore(config, client=client) as store:
            payload = store.read(session_id)
            print(f"Second read: {payload!r} (exists={store.state.record_exists})")
            store.write(session_id, payload)

        # A different client address sees no session.
        with FilesStore(config, client=ClientContext(ip="198.51.100.1")) as store:
            print(f"Other client reads: {store.read(session_id)!r}")


if __name__ == "__main__":
    main()
