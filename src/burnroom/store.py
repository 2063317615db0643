"""Key-value store backends for burnroom.

This module provides the keyed persistence the room registry is built on:
- KeyValueStore: Abstract base class defining the async get/set/clear interface
- InMemoryStore: Dict-backed store for tests and single-process deployments
- SqliteStore: File-backed (or shared in-memory) SQLite table

Keys are namespaced strings of the form ``rooms.<room_id>`` and values are
serialized room records. There are no transactions: last write wins.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROOM_KEY_PREFIX = "rooms."


def room_key(room_id: str) -> str:
    """Store key for a room record."""
    return f"{ROOM_KEY_PREFIX}{room_id}"


class KeyValueStore(ABC):
    """Abstract async key-value store.

    Implementations may raise any exception on I/O failure; the room registry
    wraps those into StorageError.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key in the store."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryStore(KeyValueStore):
    """Dict-backed store.

    All operations run on the event loop thread, so no locking is needed.
    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        """List stored keys."""
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteStore(KeyValueStore):
    """SQLite-backed store using a single key/value table.

    Blocking SQLite calls run in the default thread pool. Each worker thread
    gets its own connection from a thread-local; every connection is tracked
    so close() can release them all.

    Args:
        path: Database file path, or ":memory:" for a shared in-memory
            database visible to every thread of this store instance.
    """

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

        if self.path == ":memory:":
            # Named shared-cache DB so all threads see the same data
            self._uri = f"file:burnroom_{uuid.uuid4().hex}?mode=memory&cache=shared"
        else:
            self._uri = None

        # Keeper connection: holds the shared in-memory DB open and creates the schema
        self._keeper = self._connect()
        self._keeper.execute(SCHEMA)
        self._keeper.commit()

    def _connect(self) -> sqlite3.Connection:
        if self._uri is not None:
            conn = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
        else:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            # Enable WAL mode for better concurrent read/write performance
            conn.execute("PRAGMA journal_mode=WAL")
        # Wait for locks instead of failing immediately
        conn.execute("PRAGMA busy_timeout=5000")
        with self._lock:
            self._connections.append(conn)
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn with this thread's connection off the event loop."""
        loop = asyncio.get_running_loop()

        def _call() -> T:
            # Shared-cache connections fail with "table is locked" instead of
            # waiting, so statements are serialized per store
            with self._write_lock:
                return fn(self._get_conn())

        return await loop.run_in_executor(None, _call)

    async def get(self, key: str) -> str | None:
        def _get(conn: sqlite3.Connection) -> str | None:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None

        return await self._run(_get)

    async def set(self, key: str, value: str) -> None:
        def _set(conn: sqlite3.Connection) -> None:
            conn.execute(
                """INSERT INTO kv (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, value),
            )
            conn.commit()

        await self._run(_set)

    async def clear(self) -> None:
        def _clear(conn: sqlite3.Connection) -> int:
            cursor = conn.execute("DELETE FROM kv")
            conn.commit()
            return cursor.rowcount

        deleted = await self._run(_clear)
        logger.debug(f"Cleared {deleted} keys from {self.path}")

    async def close(self) -> None:
        """Close every connection opened by this store."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error:
                logger.warning("Failed to close SQLite connection", exc_info=True)
        self._local = threading.local()

    def count(self) -> int:
        """Number of stored keys (synchronous, for tests)."""
        row: Any = self._keeper.execute("SELECT COUNT(*) FROM kv").fetchone()
        return int(row[0])
