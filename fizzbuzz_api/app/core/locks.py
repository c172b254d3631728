"""
Thread synchronisation helpers used by the statistics stores.

``ReadWriteLock`` lets any number of readers in at once but gives a
writer exclusive access.  Waiting writers block new readers, so a
steady stream of ``most_frequent`` calls cannot starve ``increment``.

``InFlight`` counts operations that have started and not finished yet
and lets a caller wait until none are left.  The SQLite store uses it
as the drain barrier in front of a write-ahead log checkpoint.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class ReadWriteLock:
    """A writer-preferring read/write lock built on ``threading.Condition``."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            acquired = self._cond.wait_for(
                lambda: not self._writer and not self._waiting_writers, timeout
            )
            if acquired:
                self._readers += 1
            return acquired

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            self._waiting_writers += 1
            try:
                acquired = self._cond.wait_for(
                    lambda: not self._writer and not self._readers, timeout
                )
            finally:
                self._waiting_writers -= 1
            if acquired:
                self._writer = True
            else:
                # Readers queued behind this writer may go ahead now.
                self._cond.notify_all()
            return acquired

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock in shared mode; raise ``TimeoutError`` if it cannot be taken in time."""
        if not self.acquire_read(timeout):
            raise TimeoutError("timed out waiting for the read lock")
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock in exclusive mode; raise ``TimeoutError`` if it cannot be taken in time."""
        if not self.acquire_write(timeout):
            raise TimeoutError("timed out waiting for the write lock")
        try:
            yield
        finally:
            self.release_write()


class InFlight:
    """Counter of running operations with a wait-until-idle barrier."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._count = 0

    def __len__(self) -> int:
        with self._cond:
            return self._count

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count < 0:
                raise RuntimeError("InFlight.done() called more often than add()")
            if not self._count:
                self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no operation is in flight; return False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._count, timeout)
