"""Filesystem session store.

Each record is one file named after a digest of the session id (plus the
client binding when match-IP / match-UA is enabled), sharded into
subdirectories named after the first two digest characters::

    <directory>/[<prefix>/]<digest[:2]>/<digest>

Mutual exclusion uses an exclusive ``flock`` held on the open file for
the whole cycle, so this store requires a POSIX platform.

Classes
-------
- FilesStore  — one locked file per session
"""
from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, BinaryIO

from session_store.client import ClientContext
from session_store.config import FilesConfig
from session_store.fingerprint import make_digest
from session_store.stores.base import SessionStore

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class FilesStore(SessionStore):
    """Persists sessions as locked files in a sharded directory tree.

    Parameters
    ----------
    config:
        A :class:`~session_store.config.FilesConfig` or equivalent mapping.
        The ``prefix`` subdirectory is created here when missing.
    client / logger:
        See :class:`~session_store.stores.base.SessionStore`.
    """

    driver = "files"
    config_class = FilesConfig

    def __init__(
        self,
        config: FilesConfig | Mapping[str, Any],
        *,
        client: ClientContext | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(config, client=client, logger=logger)
        self._root: Path = self._config.root
        if self._config.prefix:
            self._root.mkdir(mode=_DIR_MODE, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path_for(self, session_id: str) -> Path:
        """Return the file path of ``session_id`` for the current client."""
        binding = self.client.binding(self._config.match_ip, self._config.match_ua)
        digest = make_digest(session_id + binding)
        return self._root / digest[:2] / digest

    @property
    def _stream(self) -> BinaryIO | None:
        return self._state.lock_token

    def _read_stream(self) -> bytes:
        stream = self._stream
        stream.seek(0)
        data = stream.read()
        self._state.remember(data)
        return data

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    def open(self, path: str = "", name: str = "") -> bool:
        if not self._state.is_open:
            self._state.start()
        return True

    def read(self, session_id: str) -> bytes:
        if not self._ensure_open("read"):
            return b""
        state = self._state
        if state.locked and state.session_id == session_id:
            return self._read_stream()
        if not self._acquire(session_id):
            return b""
        if not state.record_exists:
            try:
                os.chmod(self._path_for(session_id), _FILE_MODE)
            except OSError as exc:
                self._log(f"Unable to restrict permissions: {exc}", logging.WARNING)
            state.remember(b"")
            return b""
        return self._read_stream()

    def write(self, session_id: str, data: bytes) -> bool:
        if not self._ensure_open("write"):
            return False
        state = self._state
        # A released lock is only retaken by read.
        if not state.locked and state.session_id == session_id:
            self._log(f"Unable to write {session_id}: its lock is no longer held")
            return False
        if not self._acquire(session_id):
            return False
        if state.record_exists and state.is_unchanged(data):
            try:
                os.utime(self._path_for(session_id))
            except OSError as exc:
                self._log(f"Unable to touch '{self._path_for(session_id)}': {exc}")
                return False
            return True
        stream = self._stream
        try:
            stream.seek(0)
            stream.write(data)
            stream.truncate()
            stream.flush()
        except OSError as exc:
            self._log(f"Unable to write data: {exc}")
            return False
        state.remember(data)
        state.record_exists = True
        return True

    def refresh_timestamp(self, session_id: str, data: bytes) -> bool:
        path = self._path_for(session_id)
        try:
            if path.is_file():
                os.utime(path)
                return True
            path.parent.mkdir(mode=_DIR_MODE, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT, _FILE_MODE)
            with os.fdopen(fd, "wb") as stream:
                stream.write(data)
        except OSError as exc:
            self._log(f"Unable to refresh '{path}': {exc}")
            return False
        return True

    def close(self) -> bool:
        if self._stream is not None:
            self._unlock()
        self._state.finish()
        return True

    def destroy(self, session_id: str) -> bool:
        self._require_lock("destroy", session_id)
        path = self._path_for(session_id)
        # Unlink while still holding the lock; waiters notice st_nlink == 0.
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self._log(f"Unable to delete '{path}': {exc}")
            return False
        finally:
            self._unlock()
            self._state.forget_record()
        self._state.record_destroyed()
        return True

    def gc(self, max_lifetime: int) -> int | None:
        try:
            shards = [entry.path for entry in os.scandir(self._root) if entry.is_dir(follow_symlinks=False)]
        except OSError:
            self._log(
                f"Garbage Collector could not open directory '{self._root}'",
                logging.DEBUG,
            )
            return None
        cutoff = time.time() - max_lifetime
        return sum(self._gc_shard(Path(shard), cutoff) for shard in shards)

    def _gc_shard(self, directory: Path, cutoff: float) -> int:
        """Delete files in ``directory`` modified before ``cutoff``."""
        count = 0
        try:
            entries = list(os.scandir(directory))
        except OSError:
            return count
        remaining = len(entries)
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                continue
            try:
                if entry.stat(follow_symlinks=False).st_mtime < cutoff:
                    os.unlink(entry.path)
                    count += 1
                    remaining -= 1
            except FileNotFoundError:
                remaining -= 1
        if remaining == 0:
            try:
                directory.rmdir()
            except OSError:
                # A concurrent read created a file in the meantime.
                pass
        return count

    def _lock(self, session_id: str) -> bool:
        state = self._state
        if state.locked and state.session_id == session_id:
            return True
        path = self._path_for(session_id)
        while True:
            try:
                path.parent.mkdir(mode=_DIR_MODE, exist_ok=True)
            except OSError as exc:
                self._log(f"Session subdirectory '{path.parent}' was not created: {exc}")
                return False
            existed = path.is_file()
            try:
                fd = os.open(path, os.O_RDWR | os.O_CREAT, _FILE_MODE)
            except FileNotFoundError:
                # The garbage collector pruned the empty shard after mkdir.
                continue
            except OSError as exc:
                self._log(f"Unable to open '{path}': {exc}")
                return False
            stream = os.fdopen(fd, "r+b")
            try:
                fcntl.flock(stream.fileno(), fcntl.LOCK_EX)
                # The previous holder may have unlinked the file while we waited.
                if os.fstat(stream.fileno()).st_nlink > 0:
                    break
            except OSError as exc:
                self._log(f"Error while trying to lock '{path}': {exc}")
                stream.close()
                return False
            stream.close()
        state.acquired(session_id, stream)
        state.record_exists = existed
        return True

    def _unlock(self) -> bool:
        stream = self._stream
        if stream is None:
            return True
        unlocked = True
        try:
            fcntl.flock(stream.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            self._log(f"Error while trying to unlock '{self._path_for(self._state.session_id)}': {exc}")
            unlocked = False
        stream.close()
        self._state.released()
        return unlocked

    def __repr__(self) -> str:
        return f"FilesStore(directory={str(self._root)!r})"
