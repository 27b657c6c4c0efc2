# tests/utils/test_locks.py
"""
Tests for KeyedLock.
"""

import threading
import time

from valuation_engine.utils.locks import KeyedLock


class TestKeyedLock:
    """Tests for per-key locking."""

    def test_lock_removed_after_release(self):
        """Should drop a key's lock once nobody holds it."""
        locks = KeyedLock()
        with locks.hold("AAPL"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_hold_many_tolerates_duplicate_keys(self):
        """Should not deadlock on a key listed twice."""
        locks = KeyedLock()
        with locks.hold_many(["B", "A", "B"]):
            assert len(locks) == 2
        assert len(locks) == 0

    def test_same_key_is_exclusive(self):
        """Should serialize holders of the same key."""
        locks = KeyedLock()
        active = []
        overlaps = []

        def worker():
            with locks.hold("AAPL"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_keys_do_not_block(self):
        """Should let another key proceed while one is held."""
        locks = KeyedLock()
        acquired = threading.Event()

        def other():
            with locks.hold("MSFT"):
                acquired.set()

        with locks.hold("AAPL"):
            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=2)
            t.join()
