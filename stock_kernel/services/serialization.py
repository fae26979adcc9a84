"""
Per-key serialization for count submissions.

Counts for the same item or container must not interleave their
read-detect-commit passes, or the variance check could compare against a
stale previous record.  ``KeyedLocks`` hands out one lock per key and
acquires multi-key sets in sorted order so two submissions can never
deadlock on each other.
"""

from __future__ import annotations

import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Generator[None, None, None]:
        """Hold every lock in ``keys`` (deduplicated, sorted) for the block."""
        ordered = [self.lock_for(k) for k in sorted(set(keys))]
        acquired: list[threading.Lock] = []
        try:
            for lock in ordered:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
