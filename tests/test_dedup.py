"""Tests for the debounce store."""

from __future__ import annotations

import threading

from dedup import DedupStore
from models import DedupKey


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestAdmit:

    def test_first_sighting_is_admitted_once(self):
        store = DedupStore(window=600, clock=FakeClock())
        key = DedupKey("build-A", 42)

        assert store.admit(key) is True
        assert store.admit(key) is False
        assert store.admit(key) is False

    def test_distinct_keys_are_independent(self):
        store = DedupStore(window=600, clock=FakeClock())

        assert store.admit(DedupKey("build-A", 42)) is True
        assert store.admit(DedupKey("build-A", 43)) is True
        assert store.admit(DedupKey("build-B", 42)) is True

    def test_admitted_again_after_quiet_window(self):
        clock = FakeClock()
        store = DedupStore(window=600, clock=clock)
        key = DedupKey("build-A", 42)

        store.admit(key)
        clock.now += 600

        assert store.admit(key) is True

    def test_redelivery_extends_the_window(self):
        clock = FakeClock()
        store = DedupStore(window=600, clock=clock)
        key = DedupKey("build-A", 42)

        store.admit(key)
        clock.now += 500
        assert store.admit(key) is False
        clock.now += 500

        assert store.admit(key) is False

    def test_concurrent_admits_let_exactly_one_through(self):
        store = DedupStore(window=600)
        key = DedupKey("build-A", 42)
        barrier = threading.Barrier(32)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            admitted = store.admit(key)
            with lock:
                results.append(admitted)

        threads = [threading.Thread(target=worker) for _ in range(32)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert len(results) == 32


class TestSweep:

    def test_sweep_evicts_expired_entries(self):
        clock = FakeClock()
        store = DedupStore(window=600, clock=clock)
        store.admit(DedupKey("build-A", 1))
        clock.now += 300
        store.admit(DedupKey("build-A", 2))
        clock.now += 300

        assert store.sweep() == 1
        assert len(store) == 1

    def test_admit_sweeps_periodically(self):
        clock = FakeClock()
        store = DedupStore(window=10, sweep_interval=60, clock=clock)
        for number in range(100):
            store.admit(DedupKey("build-A", number))
        clock.now += 61

        store.admit(DedupKey("build-A", 1000))

        assert len(store) == 1
