"""Redis-backed counter store.

The window evaluator is registered once with SCRIPT LOAD and then invoked by
SHA1 handle, one EVALSHA round trip per throttled request. Redis runs the
script atomically, so concurrent callers sharing a counter are serialized
by the store itself.

If Redis forgets the script (restart, SCRIPT FLUSH) the handle is re-loaded
and the call retried once. Every other failure surfaces as CounterStoreError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError

from apithrottle.adapters.counter_store.base import AbstractCounterStore
from apithrottle.adapters.counter_store.window_evaluator import WINDOW_EVALUATOR_LUA
from apithrottle.core.config import RedisSettings
from apithrottle.core.errors import CounterStoreError

logger = logging.getLogger(__name__)

_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisCounterStore(AbstractCounterStore):
    """Counter store executing the window evaluator inside Redis."""

    name = "redis"

    def __init__(self, client: Redis, *, key_prefix: str = "") -> None:
        """Initialize the store.

        Args:
            client: redis.asyncio client; its socket timeouts bound every call.
            key_prefix: Namespace prepended to caller keys ("" for none).
        """
        self._client = client
        self._key_prefix = key_prefix
        self._script_sha: str | None = None

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RedisCounterStore":
        client = Redis.from_url(
            redis_settings.url,
            socket_timeout=redis_settings.socket_timeout_seconds,
            socket_connect_timeout=redis_settings.socket_connect_timeout_seconds,
        )
        return cls(client, key_prefix=redis_settings.key_prefix)

    @property
    def script_sha(self) -> str | None:
        return self._script_sha

    def _namespaced(self, key: str) -> str:
        return f"{self._key_prefix}:{key}" if self._key_prefix else key

    async def _load_script(self) -> str:
        try:
            sha = await self._client.script_load(WINDOW_EVALUATOR_LUA)
        except _STORE_ERRORS as exc:
            raise CounterStoreError(
                code="counter_store_unavailable",
                message="failed to register window evaluator script",
                details={"backend": self.name, "error_type": type(exc).__name__},
            ) from exc
        self._script_sha = sha
        return sha

    async def prepare(self) -> None:
        """Register the evaluator script at startup.

        A store that is down at startup is not fatal; the script is loaded
        lazily on the first evaluate instead.
        """
        try:
            sha = await self._load_script()
        except CounterStoreError as exc:
            logger.warning(
                "counter_store.prepare_failed",
                extra={"backend": self.name, "error_type": (exc.details or {}).get("error_type")},
            )
            return
        logger.info("counter_store.script_loaded", extra={"backend": self.name, "script_sha": sha})

    async def close(self) -> None:
        await self._client.aclose()

    async def evaluate(self, key: str, limits: Sequence[int], now_seconds: int) -> bool:
        sha = self._script_sha or await self._load_script()
        args = [*limits, now_seconds]
        redis_key = self._namespaced(key)

        try:
            try:
                result = await self._client.evalsha(sha, 1, redis_key, *args)
            except NoScriptError:
                logger.warning("throttle.script_reloaded", extra={"backend": self.name})
                sha = await self._load_script()
                result = await self._client.evalsha(sha, 1, redis_key, *args)
        except _STORE_ERRORS as exc:
            raise CounterStoreError(
                code="counter_store_unavailable",
                message="window evaluation failed",
                details={"backend": self.name, "error_type": type(exc).__name__},
            ) from exc

        return bool(result)
