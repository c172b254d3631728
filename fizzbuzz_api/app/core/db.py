"""
SQLite database integration and simple migration system.

This module provides the connection factory used by the persistent
statistics store (``get_connection``), a fixed-size pool of such
connections (``ConnectionPool``) and the schema migrations applied
when a store is opened (``init_db``).

The migration mechanism stores applied migration versions in the
``migrations`` table and executes new migrations in order.
"""

import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .config import DATABASE_MEMORY
from .errors import StorageError

# Pragmas applied to every connection.  ``wal_autocheckpoint`` is
# disabled because the store checkpoints the write-ahead log itself,
# see ``DatabaseStats.checkpoint``.
CONNECTION_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA case_sensitive_like = ON",
    "PRAGMA cache_size = -512000",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA wal_autocheckpoint = 0",
)

MIGRATIONS: List[Tuple[int, str]] = [
    # Migration 1: hit counts, one row per distinct FizzBuzz configuration
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS "stat" (
            "limit" INTEGER NOT NULL,
            "int1"  INTEGER NOT NULL,
            "int2"  INTEGER NOT NULL,
            "str1"  TEXT    NOT NULL,
            "str2"  TEXT    NOT NULL,
            "count" INTEGER NOT NULL,
            PRIMARY KEY ("limit", "int1", "int2", "str1", "str2")
        ) WITHOUT ROWID;

        CREATE INDEX IF NOT EXISTS "idx_stat_count" ON "stat" ("count");
        """,
    ),
]


def is_memory_database(data_source: str) -> bool:
    """Tell whether ``data_source`` names a volatile, non file-backed database.

    Each connection to such a database sees its own copy, so the pool
    must hold a single connection.
    """
    return "memory" in data_source


def get_database_path(data_source: str) -> str:
    """Compute the path handed to ``sqlite3.connect``.

    ``:memory:`` and ``file:`` URIs are returned unchanged.  An
    absolute path is used directly, a relative one is resolved
    against the current working directory.
    """
    if data_source == DATABASE_MEMORY or data_source.startswith("file:"):
        return data_source
    if os.path.isabs(data_source):
        return data_source
    return str(Path(data_source).resolve())


def ensure_database_directory(path: str) -> None:
    """Create the parent directory of a database file (mode 0o700) if missing."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, mode=0o700, exist_ok=True)


def get_connection(data_source: str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    The connection runs in autocommit mode (``isolation_level=None``):
    every statement is its own transaction unless an explicit
    ``BEGIN`` is issued.  ``timeout`` is SQLite's busy timeout, so a
    locked database is retried internally before ``database is
    locked`` is reported.  The connection may be used from any thread,
    but only by one thread at a time; ``ConnectionPool`` guarantees
    that.
    """
    path = get_database_path(data_source)
    conn = sqlite3.connect(
        path,
        timeout=busy_timeout_ms / 1000,
        isolation_level=None,
        check_same_thread=False,
        uri=path.startswith("file:"),
    )
    # Return rows as dict‑like objects keyed by column name
    conn.row_factory = sqlite3.Row
    try:
        for pragma in CONNECTION_PRAGMAS:
            conn.execute(pragma)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Apply pending migrations on ``conn``.

    Creates the ``migrations`` table if it does not exist, checks the
    current schema version, and applies any new migrations defined in
    ``MIGRATIONS``.  If you add a new migration, append it with an
    incremented version number.
    """
    cursor = conn.cursor()
    try:
        cursor.execute(
            "CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)"
        )
        cursor.execute("SELECT MAX(version) AS version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in MIGRATIONS:
            if version > current_version:
                cursor.executescript(sql)
                cursor.execute(
                    "INSERT OR IGNORE INTO migrations (version) VALUES (?)", (version,)
                )
                current_version = version
    finally:
        cursor.close()


class ConnectionPool:
    """A fixed set of SQLite connections handed out one caller at a time.

    All connections are opened up front by ``factory`` and handed out
    most recently returned first.  ``close`` closes the idle ones at
    once, wakes every caller waiting for a connection (they get
    ``StorageError``) and closes each borrowed one as soon as it is
    given back.
    """

    def __init__(self, factory: Callable[[], sqlite3.Connection], size: int) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self.size = size
        self._idle: List[sqlite3.Connection] = []
        try:
            for _ in range(size):
                self._idle.append(factory())
        except Exception:
            for conn in self._idle:
                conn.close()
            raise

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of the ``with`` block.

        Waits up to ``timeout`` seconds (forever when ``None``) for a
        connection to become free and raises ``TimeoutError`` after
        that.  Raises ``StorageError`` if the pool is or gets closed
        while waiting.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._closed or self._idle, timeout):
                raise TimeoutError("timed out waiting for a database connection")
            if self._closed:
                raise StorageError("database is closed")
            conn = self._idle.pop()
        try:
            yield conn
        finally:
            with self._cond:
                if self._closed:
                    conn.close()
                else:
                    self._idle.append(conn)
                    self._cond.notify()

    def close(self) -> None:
        """Close the pool.  Calling it again is a no-op."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
            self._cond.notify_all()
        for conn in idle:
            conn.close()
