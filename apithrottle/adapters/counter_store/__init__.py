"""Counter store adapters.

The shared Redis store is the production backend; the in-memory store keeps
single-process development and tests free of external services.
"""

from __future__ import annotations

from apithrottle.adapters.counter_store.base import AbstractCounterStore
from apithrottle.adapters.counter_store.in_memory import InMemoryCounterStore
from apithrottle.adapters.counter_store.redis_store import RedisCounterStore
from apithrottle.core.config import Settings


def create_counter_store(cfg: Settings) -> AbstractCounterStore:
    """Build the counter store selected by APP_THROTTLE_BACKEND."""
    if cfg.app.throttle_backend == "memory":
        return InMemoryCounterStore()
    return RedisCounterStore.from_settings(cfg.redis)


__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
