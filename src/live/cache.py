from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from src.live.records import Snapshot


class ReadWriteLock:
    """
    Many readers or one writer. Writer-preferring: once a writer is waiting,
    new readers queue behind it.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class SnapshotCache:
    """Holds the latest committed Snapshot. Snapshots are immutable, so a read hands out the value itself."""

    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        self._lock = ReadWriteLock()
        self._snapshot = initial if initial is not None else Snapshot.empty()

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock.write_locked():
            self._snapshot = snapshot

    def read_snapshot(self) -> Snapshot:
        with self._lock.read_locked():
            return self._snapshot
