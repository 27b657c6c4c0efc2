# backend/valuation_engine/utils/locks.py
"""
Keyed in-process locks.

Writers of the same price-bar key must not interleave their
read-compare-write sequence. A single global lock would serialize
unrelated symbols, so locks are handed out per key and dropped once
no thread holds or waits on them.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import ExitStack, contextmanager


class KeyedLock:
    """
    A family of mutexes addressed by hashable keys.

    Usage:
        locks = KeyedLock()
        with locks.hold(("AAPL", date(2024, 1, 2), "USD")):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    @contextmanager
    def hold_many(self, keys: list[Hashable]) -> Iterator[None]:
        """Hold several keys, acquired in sorted order to avoid deadlock."""
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self.hold(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
