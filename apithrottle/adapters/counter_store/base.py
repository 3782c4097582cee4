"""Counter store interface.

The throttle interceptor depends on this abstraction, not on a concrete
backend, so a shared Redis store and the single-process in-memory store are
interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence


class AbstractCounterStore(ABC):
    """Shared, atomic key-counter backend.

    Implementations must run the whole window evaluation (increment, expire
    and compare for every configured window) as one indivisible operation.
    """

    name: str = "abstract"

    async def prepare(self) -> None:
        """Startup hook (connect, register server-side scripts). Optional."""

    async def close(self) -> None:
        """Release connections. Optional."""

    @abstractmethod
    async def evaluate(self, key: str, limits: Sequence[int], now_seconds: int) -> bool:
        """Count one request against every configured window of key.

        Args:
            key: Caller key (caller address + operation identity).
            limits: (per_minute, per_hour, per_day); 0 skips a window.
            now_seconds: Current UNIX time in whole seconds.

        Returns:
            True when at least one window limit is exceeded (throttle).

        Raises:
            CounterStoreError: If the store is unreachable or the command fails.
        """
        raise NotImplementedError
