"""
Service layer for FizzBuzz request statistics.

A statistics store counts how many times each ``FizzBuzzConfig`` has
been requested and reports the most requested one.  Two stores share
the ``StatsService`` interface:

* ``MemoryStats`` keeps the counts in a dictionary guarded by a
  read/write lock.  Counts disappear with the process.
* ``DatabaseStats`` keeps them in the ``stat`` table of a SQLite
  database (see ``core.db``), one row per distinct configuration.

Both stores break ties the same way: among configurations sharing the
highest count, the smallest one (compared field by field: ``limit``,
``int1``, ``int2``, ``str1``, ``str2``) wins, so the answer does not
depend on dictionary or table order.

Every operation takes an optional ``deadline``, a ``time.monotonic()``
instant after which it gives up with ``DeadlineExceeded``.  A failed
or cancelled increment leaves the counts unchanged.  Use
``open_stats`` to build the store matching a ``database_url`` setting.
"""

from __future__ import annotations

import functools
import os
import sqlite3
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple, TypeVar

from fizzbuzz_api.app.core.config import DATABASE_MEMORY, DATABASE_OFF
from fizzbuzz_api.app.core.db import (
    ConnectionPool,
    ensure_database_directory,
    get_connection,
    get_database_path,
    init_db,
    is_memory_database,
)
from fizzbuzz_api.app.core.errors import DeadlineExceeded, StorageError
from fizzbuzz_api.app.core.locks import InFlight, ReadWriteLock
from fizzbuzz_api.app.services.fizzbuzz_service import FizzBuzzConfig

T = TypeVar("T")

# SQLite calls the progress handler every PROGRESS_STEPS virtual machine
# instructions; that is how statement execution notices a deadline.
PROGRESS_STEPS = 1000

INCREMENT_SQL = """
    INSERT INTO "stat" ("limit", "int1", "int2", "str1", "str2", "count")
    VALUES (?, ?, ?, ?, ?, 1)
    ON CONFLICT ("limit", "int1", "int2", "str1", "str2") DO UPDATE SET
        "count" = "count" + 1
"""

MOST_FREQUENT_SQL = """
    SELECT "limit", "int1", "int2", "str1", "str2", "count"
    FROM "stat"
    WHERE "count" = (SELECT MAX("count") FROM "stat")
    ORDER BY "limit", "int1", "int2", "str1", "str2"
    LIMIT 1
"""

CHECKPOINT_SQL = "PRAGMA wal_checkpoint(RESTART)"


class StatsService(Protocol):
    """Hit counter shared by the HTTP handlers."""

    def increment(self, config: FizzBuzzConfig, deadline: Optional[float] = None) -> None:
        """Record one request of ``config``."""

    def most_frequent(self, deadline: Optional[float] = None) -> Tuple[int, Optional[FizzBuzzConfig]]:
        """Return ``(count, config)`` for the most requested configuration.

        An empty store returns ``(0, None)``.
        """

    def close(self) -> None:
        """Release the store's resources."""


def _timeout(deadline: Optional[float]) -> Optional[float]:
    """Convert a deadline into the number of seconds left (never negative)."""
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


def _check_deadline(operation: str, deadline: Optional[float]) -> None:
    """Refuse to start an operation whose deadline has already passed."""
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceeded(operation, deadline)


class MemoryStats:
    """Process-local hit counts."""

    def __init__(self) -> None:
        self._counts: Dict[FizzBuzzConfig, int] = {}
        self._lock = ReadWriteLock()
        self._closed = False

    def __enter__(self) -> "MemoryStats":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError("stats store is closed")

    def increment(self, config: FizzBuzzConfig, deadline: Optional[float] = None) -> None:
        self._check_open()
        _check_deadline("increment", deadline)
        try:
            with self._lock.write_locked(_timeout(deadline)):
                self._counts[config] = self._counts.get(config, 0) + 1
        except TimeoutError as exc:
            raise DeadlineExceeded("increment", deadline) from exc

    def most_frequent(self, deadline: Optional[float] = None) -> Tuple[int, Optional[FizzBuzzConfig]]:
        self._check_open()
        _check_deadline("most_frequent", deadline)
        best_count, best = 0, None
        try:
            with self._lock.read_locked(_timeout(deadline)):
                for config, count in self._counts.items():
                    # Equal counts are settled by the config order, not by dict order.
                    if count > best_count or (count == best_count and config < best):
                        best_count, best = count, config
        except TimeoutError as exc:
            raise DeadlineExceeded("most_frequent", deadline) from exc
        return best_count, best

    def close(self) -> None:
        self._closed = True


class DatabaseStats:
    """Hit counts persisted in SQLite.

    Use ``DatabaseStats.open`` rather than the constructor.  The store
    owns its connection pool and must be closed once no longer needed;
    every call made after ``close`` raises ``StorageError``.

    Automatic write-ahead log checkpoints are disabled on every
    connection.  Instead, every ``checkpoint_interval`` increments the
    caller that crosses the threshold checkpoints the log itself: it
    holds the store's gate so no new increment can start, waits for the
    increments already running to finish, then runs
    ``PRAGMA wal_checkpoint(RESTART)``.  If the running increments do
    not finish within the busy timeout the checkpoint is skipped until
    the next threshold, and so is a checkpoint blocked by readers.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        checkpoint_interval: int = 1000,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be at least 1")
        self._pool = pool
        self._checkpoint_interval = checkpoint_interval
        self._drain_timeout = busy_timeout_ms / 1000
        self._gate = threading.Lock()
        self._since_checkpoint = 0
        self._in_flight = InFlight()

    @classmethod
    def open(
        cls,
        data_source: str,
        busy_timeout_ms: int = 5000,
        checkpoint_interval: int = 1000,
        pool_size: Optional[int] = None,
    ) -> "DatabaseStats":
        """Open (creating if needed) the statistics database at ``data_source``.

        A volatile database (``:memory:`` or any locator containing
        ``memory``) gets a single connection because each connection
        would otherwise see its own empty database.  A file gets
        ``pool_size`` connections, one per CPU by default.
        """
        if is_memory_database(data_source):
            size = 1
        else:
            size = pool_size or os.cpu_count() or 1
        factory = functools.partial(get_connection, data_source, busy_timeout_ms)
        try:
            pool = ConnectionPool(factory, size)
        except sqlite3.Error as exc:
            raise StorageError(f"opening database {data_source}: {exc}") from exc
        try:
            with pool.connection() as conn:
                init_db(conn)
        except sqlite3.Error as exc:
            pool.close()
            raise StorageError(f"migrating database {data_source}: {exc}") from exc
        return cls(pool, checkpoint_interval=checkpoint_interval, busy_timeout_ms=busy_timeout_ms)

    def __enter__(self) -> "DatabaseStats":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._pool.closed

    def _check_open(self) -> None:
        if self._pool.closed:
            raise StorageError("stats database is closed")

    def _run(self, operation: str, deadline: Optional[float], fn: Callable[[sqlite3.Connection], T]) -> T:
        """Call ``fn`` with a pooled connection, translating errors.

        Pool waits and statement execution both honour ``deadline``.
        An interrupted statement is rolled back by SQLite.
        """
        self._check_open()
        _check_deadline(operation, deadline)
        try:
            with self._pool.connection(_timeout(deadline)) as conn:
                if deadline is not None:
                    conn.set_progress_handler(lambda: time.monotonic() >= deadline, PROGRESS_STEPS)
                try:
                    return fn(conn)
                finally:
                    if deadline is not None:
                        conn.set_progress_handler(None, PROGRESS_STEPS)
        except TimeoutError as exc:
            raise DeadlineExceeded(operation, deadline) from exc
        except sqlite3.Error as exc:
            if deadline is not None and time.monotonic() >= deadline:
                raise DeadlineExceeded(operation, deadline) from exc
            raise StorageError(f"{operation}: {exc}") from exc
        except UnicodeEncodeError as exc:
            # Strings holding lone surrogates cannot be bound as UTF-8 text.
            raise StorageError(f"{operation}: {exc}") from exc

    def increment(self, config: FizzBuzzConfig, deadline: Optional[float] = None) -> None:
        self._check_open()
        _check_deadline("increment", deadline)
        timeout = _timeout(deadline)
        if not self._gate.acquire(timeout=-1 if timeout is None else timeout):
            raise DeadlineExceeded("increment", deadline)
        try:
            self._since_checkpoint += 1
            if self._since_checkpoint >= self._checkpoint_interval:
                self._since_checkpoint = 0
                self._checkpoint_locked()
            # Registered while the gate is held, so a checkpoint that
            # takes the gate next is guaranteed to wait for this call.
            self._in_flight.add()
        finally:
            self._gate.release()

        params = (config.limit, config.int1, config.int2, config.str1, config.str2)
        try:
            self._run("increment", deadline, lambda conn: conn.execute(INCREMENT_SQL, params))
        finally:
            self._in_flight.done()

    def most_frequent(self, deadline: Optional[float] = None) -> Tuple[int, Optional[FizzBuzzConfig]]:
        def query(conn: sqlite3.Connection) -> Tuple[int, Optional[FizzBuzzConfig]]:
            row = conn.execute(MOST_FREQUENT_SQL).fetchone()
            if row is None:
                return 0, None
            config = FizzBuzzConfig(
                limit=row["limit"],
                int1=row["int1"],
                int2=row["int2"],
                str1=row["str1"],
                str2=row["str2"],
            )
            return row["count"], config

        return self._run("most_frequent", deadline, query)

    def checkpoint(self) -> bool:
        """Drain running increments and checkpoint the write-ahead log now.

        Returns False when the checkpoint was skipped: the running
        increments did not finish in time, no connection was free or
        readers kept the log busy.  SQLite errors raise ``StorageError``.
        """
        self._check_open()
        with self._gate:
            return self._checkpoint_locked()

    def _checkpoint_locked(self) -> bool:
        # Caller holds self._gate.
        if not self._in_flight.wait(self._drain_timeout):
            return False

        def restart(conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
            return conn.execute(CHECKPOINT_SQL).fetchone()

        try:
            row = self._run("checkpoint", time.monotonic() + self._drain_timeout, restart)
        except DeadlineExceeded:
            # Every connection is busy with readers; try again next round.
            return False
        # The first column is 1 when readers kept the checkpoint from
        # completing; the log is left as is until the next round.
        return row is None or not row[0]

    def close(self) -> None:
        """Close every pooled connection.  Calling it again is a no-op."""
        self._pool.close()


def open_stats(
    data_source: str,
    busy_timeout_ms: int = 5000,
    checkpoint_interval: int = 1000,
) -> StatsService:
    """Build the statistics store for a ``database_url`` setting.

    ``off`` gives a ``MemoryStats``.  Anything else is handed to
    ``DatabaseStats.open``; the parent directory is created first
    unless the locator is a URI or names an in-memory database.
    """
    if data_source == DATABASE_OFF:
        return MemoryStats()
    if DATABASE_MEMORY not in data_source and not data_source.startswith("file:"):
        path = get_database_path(data_source)
        try:
            ensure_database_directory(path)
        except OSError as exc:
            raise StorageError(f"creating database directory for {path}: {exc}") from exc
        data_source = path
    return DatabaseStats.open(
        data_source,
        busy_timeout_ms=busy_timeout_ms,
        checkpoint_interval=checkpoint_interval,
    )
