"""
Database connection management.

Provides the SQLite connection backing the persistent key-value store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "ai_automod.db") -> sqlite3.Connection:
    """Create and return a SQLite connection for the key-value store.

    The connection runs in autocommit mode so callers control transactions
    explicitly with ``BEGIN IMMEDIATE``.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with a busy timeout suitable for concurrent writers
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
