"""
Key-value store primitives.

Every cross-invocation coordination point (cost ledger, coalescing locks,
circuit state, cached results) goes through this interface. Only five
primitives are required: get, set-with-expiry, set-if-absent-with-expiry,
delete and atomic increment.
"""

import asyncio
import sqlite3
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from ai_automod.core.errors import StoreError
from .db import get_connection

Clock = Callable[[], float]


class KeyValueStore(ABC):
    """Abstract async key-value store.

    Implementations must make ``set_if_absent`` and ``increment`` atomic with
    respect to concurrent callers. Backend failures are raised as
    :class:`StoreError` so callers can choose to fail open or closed.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, optionally expiring after ``ttl_seconds``."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        """Store ``value`` only if ``key`` is absent. Returns True if stored."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> int:
        """Atomically add ``amount`` to the integer at ``key`` and return the new value."""


class InMemoryStore(KeyValueStore):
    """Process-local store used in tests and single-process deployments.

    No method awaits between reading and writing its entry, so each
    primitive is atomic on a single event loop.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def increment(self, key: str, amount: int = 1) -> int:
        current = self._live(key)
        try:
            new_value = int(current or 0) + amount
        except ValueError:
            raise StoreError(f"Value at {key} is not an integer")
        expires_at = self._data[key][1] if key in self._data else None
        self._data[key] = (str(new_value), expires_at)
        return new_value

    def keys(self, prefix: str = "") -> list:
        """Return live keys starting with ``prefix``. Test and CLI helper."""
        return sorted(k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None)


class SQLiteStore(KeyValueStore):
    """Persistent store backed by a single SQLite table.

    Blocking SQLite calls run in a worker thread. Increments and
    set-if-absent each run inside one ``BEGIN IMMEDIATE`` transaction, which
    takes the database write lock before reading.
    """

    def __init__(self, db_path: str = "ai_automod.db", clock: Clock = time.time):
        self.db_path = db_path
        self._clock = clock

    def initialize_schema(self) -> None:
        """Create the kv_entry table if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_entry (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
            """)
        finally:
            conn.close()

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise StoreError(f"SQLite store failure: {e}") from e

    def _read(self, conn: sqlite3.Connection, key: str) -> Optional[str]:
        row = conn.execute(
            "SELECT value, expires_at FROM kv_entry WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and self._clock() >= expires_at:
            conn.execute("DELETE FROM kv_entry WHERE key = ?", (key,))
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    def _get_sync(self, key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            return self._read(conn, key)
        finally:
            conn.close()

    def _set_sync(self, key: str, value: str, ttl_seconds: Optional[float]) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO kv_entry (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )
        finally:
            conn.close()

    def _set_if_absent_sync(self, key: str, value: str, ttl_seconds: float) -> bool:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if self._read(conn, key) is not None:
                    conn.execute("COMMIT")
                    return False
                conn.execute(
                    "INSERT OR REPLACE INTO kv_entry (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, value, self._expiry(ttl_seconds)),
                )
                conn.execute("COMMIT")
                return True
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def _delete_sync(self, key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv_entry WHERE key = ?", (key,))
        finally:
            conn.close()

    def _increment_sync(self, key: str, amount: int) -> int:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(conn, key)
                new_value = int(current or 0) + amount
                conn.execute(
                    """
                    INSERT INTO kv_entry (key, value, expires_at) VALUES (?, ?, NULL)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (key, str(new_value)),
                )
                conn.execute("COMMIT")
                return new_value
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._get_sync, key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        await self._run(self._set_sync, key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        return await self._run(self._set_if_absent_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._run(self._delete_sync, key)

    async def increment(self, key: str, amount: int = 1) -> int:
        try:
            return await self._run(self._increment_sync, key, amount)
        except ValueError as e:
            raise StoreError(f"Value at {key} is not an integer") from e
