"""Multi-key locking over package names.

A transaction locks every package name it touches. Locks are taken in
sorted order, so two transactions with overlapping name sets serialise
instead of deadlocking, and disjoint transactions run in parallel.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from limepkg.errors import LifecycleError


class LockUnavailable(LifecycleError):
    """Raised when a package name lock cannot be acquired within the timeout."""


class NameLockManager:
    """Hands out one lock per package name."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def is_locked(self, name: str) -> bool:
        return self._lock_for(name).locked()

    @contextmanager
    def hold(self, names: Iterable[str], *, timeout: float | None = None) -> Iterator[list[str]]:
        """Hold the locks for ``names`` for the duration of the block."""
        ordered = sorted(set(names))
        acquired: list[threading.Lock] = []
        try:
            for name in ordered:
                lock = self._lock_for(name)
                if not lock.acquire(timeout=-1 if timeout is None else timeout):
                    raise LockUnavailable(
                        f"Package {name} is locked by another transaction"
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
