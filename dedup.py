"""
Deduplication and debounce of build events.
"""

import logging
import threading
import time
from typing import Callable, Dict

from models import DedupKey

logger = logging.getLogger(__name__)


class DedupStore:
    """Admits each (job, build) key once per sliding debounce window.

    Every sighting of a key refreshes its last-seen time, so a build whose
    webhook keeps being redelivered stays suppressed until it has been quiet
    for a whole window. Entries older than the window are swept out at most
    once per *sweep_interval*, which keeps memory bounded.
    """

    def __init__(self, window: float, sweep_interval: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._seen: Dict[DedupKey, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def admit(self, key: DedupKey) -> bool:
        """Return True only for the first sighting of *key* inside the window."""
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep_locked(now)
            last_seen = self._seen.get(key)
            self._seen[key] = now
            return last_seen is None or now - last_seen >= self.window

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, seen in self._seen.items() if now - seen >= self.window]
        for key in expired:
            del self._seen[key]
        self._last_sweep = now
        if expired:
            logger.debug("Evicted %d dedup entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
