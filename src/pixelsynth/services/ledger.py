"""Quota ledger storage.

The admission controller only talks to the `ClientStore` protocol, so the
in-memory table can be swapped for an external atomic key-value store without
touching the admission logic. `lock(key)` is the seam for per-key mutual
exclusion around a read-modify-write of one record.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from threading import Lock
from typing import Protocol

from pixelsynth.models import ClientRecord


class ClientStore(Protocol):
    """Storage interface for client records."""

    def get(self, key: str) -> ClientRecord | None: ...

    def put(self, key: str, record: ClientRecord) -> None: ...

    def lock(self, key: str) -> AbstractContextManager[None]: ...

    def values(self) -> list[ClientRecord]: ...

    def __len__(self) -> int: ...


class InMemoryClientStore:
    """Process-local client table guarded by a table lock and per-key locks."""

    def __init__(self) -> None:
        self._records: dict[str, ClientRecord] = {}
        self._key_locks: dict[str, Lock] = {}
        self._table_lock = Lock()

    def get(self, key: str) -> ClientRecord | None:
        """Return a copy of the stored record, or None if the key is unknown."""
        with self._table_lock:
            record = self._records.get(key)
            return replace(record) if record is not None else None

    def put(self, key: str, record: ClientRecord) -> None:
        """Store a copy of `record` under `key`."""
        with self._table_lock:
            self._records[key] = replace(record)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the per-key lock for the duration of the block."""
        with self._table_lock:
            key_lock = self._key_locks.setdefault(key, Lock())
        with key_lock:
            yield

    def values(self) -> list[ClientRecord]:
        """Return a snapshot of every stored record."""
        with self._table_lock:
            return [replace(record) for record in self._records.values()]

    def clear(self) -> None:
        """Drop every record (used by tests and admin tooling)."""
        with self._table_lock:
            self._records.clear()
            self._key_locks.clear()

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._records)
