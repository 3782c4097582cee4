"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each evaluate runs the window evaluator under one lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from apithrottle.adapters.counter_store.base import AbstractCounterStore
from apithrottle.adapters.counter_store.window_evaluator import evaluate_windows

# Full sweeps of expired counters run at most this often
PURGE_INTERVAL_SECONDS = 1.0


@dataclass
class _Counter:
    value: int
    expires_at: float | None


class _LockedCounterOps:
    """incr/expire primitives over the store's dict; caller holds the lock."""

    def __init__(self, store: "InMemoryCounterStore") -> None:
        self._store = store

    def incr(self, key: str) -> int:
        counter = self._store._live_counter(key)
        if counter is None:
            counter = _Counter(value=0, expires_at=None)
            self._store._counters[key] = counter
        counter.value += 1
        return counter.value

    def expire(self, key: str, seconds: int) -> None:
        counter = self._store._counters.get(key)
        if counter is not None:
            counter.expires_at = self._store._clock() + seconds


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a process-local dict with TTL expiry.

    Important:
        Counters are not shared between processes. Use the Redis store when
        the API runs with more than one worker.
    """

    name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source for counter expiry (UNIX seconds).
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[str, _Counter] = {}
        self._ops = _LockedCounterOps(self)
        self._last_purge = float("-inf")

    def _live_counter(self, key: str) -> _Counter | None:
        counter = self._counters.get(key)
        if counter is None:
            return None
        if counter.expires_at is not None and counter.expires_at <= self._clock():
            del self._counters[key]
            return None
        return counter

    def _purge_expired(self) -> None:
        now = self._clock()
        self._last_purge = now
        expired = [
            key
            for key, counter in self._counters.items()
            if counter.expires_at is not None and counter.expires_at <= now
        ]
        for key in expired:
            del self._counters[key]

    async def evaluate(self, key: str, limits: Sequence[int], now_seconds: int) -> bool:
        with self._lock:
            if self._clock() - self._last_purge >= PURGE_INTERVAL_SECONDS:
                self._purge_expired()
            return evaluate_windows(self._ops, key, [*limits, now_seconds])

    def get(self, key: str) -> int | None:
        """Current value of a live counter (None when absent or expired)."""
        with self._lock:
            counter = self._live_counter(key)
            return counter.value if counter else None

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._counters)
