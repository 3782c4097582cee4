"""Unit tests for the in-memory counter store."""

from unittest.mock import Mock

import pytest

from apithrottle.adapters.counter_store.in_memory import InMemoryCounterStore


@pytest.mark.asyncio
async def test_allows_up_to_limit_in_same_window(memory_store: InMemoryCounterStore, t0: int) -> None:
    assert await memory_store.evaluate("k", (3, 0, 0), t0) is False
    assert await memory_store.evaluate("k", (3, 0, 0), t0) is False
    assert await memory_store.evaluate("k", (3, 0, 0), t0) is False
    assert await memory_store.evaluate("k", (3, 0, 0), t0) is True


@pytest.mark.asyncio
async def test_counter_expires_after_window(clock: Mock, t0: int) -> None:
    store = InMemoryCounterStore(clock=clock)

    assert await store.evaluate("k", (1, 0, 0), t0) is False
    assert store.get(f"k:m:60:{t0 // 60}") == 1

    clock.return_value = t0 + 60
    assert store.get(f"k:m:60:{t0 // 60}") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_fresh_window_starts_at_one(clock: Mock, t0: int) -> None:
    store = InMemoryCounterStore(clock=clock)

    assert await store.evaluate("k", (1, 0, 0), t0) is False
    assert await store.evaluate("k", (1, 0, 0), t0) is True

    clock.return_value = t0 + 61
    assert await store.evaluate("k", (1, 0, 0), t0 + 61) is False
    assert store.get(f"k:m:60:{(t0 + 61) // 60}") == 1


@pytest.mark.asyncio
async def test_isolated_by_key(memory_store: InMemoryCounterStore, t0: int) -> None:
    assert await memory_store.evaluate("k1", (1, 0, 0), t0) is False
    assert await memory_store.evaluate("k1", (1, 0, 0), t0) is True

    assert await memory_store.evaluate("k2", (1, 0, 0), t0) is False


@pytest.mark.asyncio
async def test_zero_limits_never_throttle(memory_store: InMemoryCounterStore, t0: int) -> None:
    for _ in range(20):
        assert await memory_store.evaluate("k", (0, 0, 0), t0) is False
    assert len(memory_store) == 0


@pytest.mark.asyncio
async def test_throttled_request_still_counts_in_earlier_windows(
    memory_store: InMemoryCounterStore, t0: int
) -> None:
    assert await memory_store.evaluate("k", (5, 1, 0), t0) is False
    assert await memory_store.evaluate("k", (5, 1, 0), t0) is True

    assert memory_store.get(f"k:m:60:{t0 // 60}") == 2
    assert memory_store.get(f"k:h:3600:{t0 // 3600}") == 2
