#!/usr/bin/env python3
"""Example: Storage Backends

Runs the same request cycle against the files and SQLite database
stores, then garbage-collects both.  Redis and Memcached stores are
created the same way from their configs when a server is available.

Usage:
    python examples/02_storage_backends.py

Requirements:
    pip install session-store
"""
from __future__ import annotations

import tempfile
from pathlib import Path

import session_store
from session_store import SessionStore, create_store

SESSION_ID = "5f2b9c0e1a7d4b3c8e6f0a1b2c3d4e5f"


def demo_store(label: str, store: SessionStore) -> None:
    with store:
        store.read(SESSION_ID)
        store.write(SESSION_ID, b"user|s:5:\"alice\";")
    with store:
        payload = store.read(SESSION_ID)
    print(f"  [{label}] stored and read back {len(payload)} bytes")
    print(f"  [{label}] gc(max_lifetime=3600) deleted {store.gc(3600)} record(s)")


def main() -> None:
    print(f"session-store version: {session_store.__version__}")

    with tempfile.TemporaryDirectory() as tmpdir:
        print("\nFiles store:")
        sessions = Path(tmpdir) / "sessions"
        sessions.mkdir()
        demo_store("files", create_store("files", {"directory": sessions}))
        shards = [path for path in sessions.iterdir() if path.is_dir()]
        print(f"  Shard directories: {len(shards)}")

        print("\nDatabase store (SQLite):")
        database = create_store("database", {"url": f"sqlite:///{Path(tmpdir) / 'sessions.db'}"})
        database.create_schema()
        demo_store("database", database)


if __name__ == "__main__":
    main()
