"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports the settings module,
so tests never depend on a local .env file or a running Redis.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_THROTTLE_ENABLED", "true")
os.environ.setdefault("APP_THROTTLE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "json")

from unittest.mock import Mock

import pytest

from apithrottle.adapters.counter_store.in_memory import InMemoryCounterStore


# 2023-11-14T22:13:00Z, the first second of a minute bucket
T0 = 1_700_000_000 - (1_700_000_000 % 60)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=float(T0))


@pytest.fixture
def memory_store(clock: Mock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def t0() -> int:
    return T0
