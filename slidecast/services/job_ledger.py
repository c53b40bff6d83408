"""Append-only ledger of finished render jobs, stored as a JSON array.

Appends are serialized per ledger file with a process-wide lock and written
atomically (temp file + ``os.replace``), so concurrent jobs never lose each
other's entries. A missing ledger reads as empty; an unparsable one reads as
empty and is moved aside on the next append.
"""

import asyncio
import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from slidecast.config import get_settings
from slidecast.exceptions import StorageError

logger = logging.getLogger(__name__)

Entries = list[dict[str, Any]]

_locks: dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    key = os.path.abspath(path)
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


class _CorruptLedger(Exception):
    pass


class JobLedger:
    """JSON-array job ledger with serialized, atomic appends."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = _lock_for(path)

    def _read(self) -> Entries:
        """Read entries; raises _CorruptLedger when the file cannot be parsed."""
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to read job ledger: {e}", path=self.path) from e

        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise _CorruptLedger(str(e)) from e
        if not isinstance(data, list):
            raise _CorruptLedger(f"expected a JSON array, got {type(data).__name__}")
        return data

    def _quarantine(self) -> None:
        """Move an unparsable ledger aside (called under lock)."""
        target = f"{self.path}.corrupt-{int(time.time() * 1000)}"
        try:
            os.replace(self.path, target)
        except OSError as e:
            raise StorageError(f"Failed to move corrupt job ledger aside: {e}", path=self.path) from e
        logger.warning(f"[LEDGER] Unparsable ledger moved to {target}")

    def _write(self, entries: Entries) -> None:
        """Atomically replace the ledger file (called under lock)."""
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".mappings-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entries, f, indent=2, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write job ledger: {e}", path=self.path) from e

    def append(self, entry: Mapping[str, Any]) -> None:
        """Append one entry.

        Raises:
            StorageError: If the ledger cannot be read or written
        """
        with self._lock:
            try:
                entries = self._read()
            except _CorruptLedger as e:
                logger.warning(f"[LEDGER] Ignoring unparsable ledger {self.path}: {e}")
                self._quarantine()
                entries = []
            entries.append(dict(entry))
            self._write(entries)
        logger.info(f"[LEDGER] Appended entry {entry.get('id')} ({len(entries)} total)")

    def list(self) -> Entries:
        """All entries in append order; ``[]`` when the ledger is absent or unparsable."""
        with self._lock:
            try:
                return self._read()
            except _CorruptLedger as e:
                logger.warning(f"[LEDGER] Unparsable ledger {self.path} read as empty: {e}")
                return []

    async def append_async(self, entry: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self.append, entry)

    async def list_async(self) -> Entries:
        return await asyncio.to_thread(self.list)


@lru_cache
def get_job_ledger() -> JobLedger:
    """Ledger at the configured path."""
    return JobLedger(get_settings().ledger_path)
