"""Throttle interceptor and its FastAPI dependency.

Per request:
1. Take the operation identity from the route FastAPI matched.
2. Look up its quota in the frozen registry snapshot; no quota means the
   request proceeds without touching the counter store.
3. Otherwise evaluate ``{caller}:{operation}`` against the counter store and
   short-circuit with 429 when a window limit is exceeded.

Store failures are logged and the request is allowed through (fail open):
API availability takes priority over strict enforcement during an outage.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import Request, Response, status
from fastapi.routing import APIRoute

from apithrottle.adapters.counter_store.base import AbstractCounterStore
from apithrottle.core.discovery import operation_identity
from apithrottle.core.errors import CounterStoreError
from apithrottle.core.logging import hash_identifier
from apithrottle.core.quota import ThrottleVerdict
from apithrottle.core.registry import OPERATION_SEPARATOR, QuotaSnapshot

logger = logging.getLogger(__name__)

REJECTION_DESCRIPTION = "Too many Requests. Back-off and try again later."
REJECTION_HEADER = "X-Throttle-Reason"

UNKNOWN_CALLER = "unknown"


def build_caller_key(caller_address: str, operation: str) -> str:
    """Compose the counter key for one caller of one operation.

    The caller part may itself contain ":" (IPv6 addresses); the registry
    rejects operation names containing it, so the operation is always the
    segment after the last separator and keys never collide.

    Examples:
        >>> build_caller_key("1.2.3.4", "GetThing")
        '1.2.3.4:GetThing'
    """
    return f"{caller_address}{OPERATION_SEPARATOR}{operation}"


def apply_rejection(response: Response) -> None:
    """Turn response into the 429 rejection, replacing any body it carried."""
    response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
    response.body = REJECTION_DESCRIPTION.encode("utf-8")
    response.headers["content-length"] = str(len(response.body))
    response.headers["content-type"] = "text/plain; charset=utf-8"
    response.headers[REJECTION_HEADER] = REJECTION_DESCRIPTION


class ThrottleInterceptor:
    """Applies quota decisions to requests.

    Holds no locks and no per-caller state: the counter store is the single
    source of truth and the only synchronization point.
    """

    def __init__(
        self,
        quotas: QuotaSnapshot,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._quotas = quotas
        self._store = store
        self._clock = clock

    @property
    def quotas(self) -> QuotaSnapshot:
        return self._quotas

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    async def check(self, operation: str, caller_address: str) -> ThrottleVerdict:
        """Decide whether one request of caller_address to operation may proceed.

        Args:
            operation: Operation identity of the matched route.
            caller_address: Caller identity, usually the remote address.

        Returns:
            ThrottleVerdict.DENY when a window limit is exceeded, ALLOW
            otherwise, including when the counter store fails.
        """

        quota = self._quotas.get(operation)
        if quota is None:
            return ThrottleVerdict.ALLOW

        key = build_caller_key(caller_address, operation)
        try:
            throttled = await self._store.evaluate(key, quota.limits, int(self._clock()))
        except CounterStoreError as exc:
            logger.error(
                "throttle.store_unavailable",
                extra={
                    "operation": operation,
                    "caller_hash": hash_identifier(caller_address),
                    "backend": self._store.name,
                    "error_code": exc.code,
                    "error_message": exc.message,
                    "error_details": exc.details,
                },
            )
            return ThrottleVerdict.ALLOW
        except Exception:
            logger.exception(
                "throttle.store_unavailable",
                extra={
                    "operation": operation,
                    "caller_hash": hash_identifier(caller_address),
                    "backend": self._store.name,
                    "error_code": "unexpected_store_error",
                },
            )
            return ThrottleVerdict.ALLOW

        if not throttled:
            return ThrottleVerdict.ALLOW

        logger.warning(
            "throttle.denied",
            extra={
                "operation": operation,
                "caller_hash": hash_identifier(caller_address),
                **quota.as_dict(),
            },
        )
        return ThrottleVerdict.DENY

    async def intercept(self, operation: str, caller_address: str, response: Response) -> bool:
        """Check the request and apply the verdict to response.

        Returns:
            True when the request was rejected and must not be dispatched.
        """
        if await self.check(operation, caller_address) is ThrottleVerdict.DENY:
            apply_rejection(response)
            return True
        return False


def resolve_caller_address(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Caller identity used for counting.

    Args:
        request: Incoming request.
        trust_forwarded_for: Use the first X-Forwarded-For hop when present.
            Only enable behind a proxy that overwrites the header.

    Returns:
        Caller address, or "unknown" when the transport does not provide one.
    """

    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else UNKNOWN_CALLER


class RequestRejected(Exception):
    """Raised by enforce_throttle to stop dispatch; carries the 429 response."""

    def __init__(self, response: Response) -> None:
        super().__init__(REJECTION_DESCRIPTION)
        self.response = response


async def rejected_request_handler(request: Request, exc: RequestRejected) -> Response:
    return exc.response


async def enforce_throttle(request: Request) -> None:
    """FastAPI dependency enforcing the quota of the matched route.

    Installed app-wide by create_app; host routers may also declare it
    explicitly (FastAPI resolves it once per request either way):

        router = APIRouter(dependencies=[Depends(enforce_throttle)])

    Expects ``app.state.throttle_interceptor`` (set during startup); when it
    is missing or None, throttling is disabled and requests pass through.

    Raises:
        RequestRejected: When the caller exceeded a window limit.
    """

    interceptor: ThrottleInterceptor | None = getattr(request.app.state, "throttle_interceptor", None)
    if interceptor is None or not interceptor.quotas:
        return

    route = request.scope.get("route")
    if not isinstance(route, APIRoute):
        return

    operation = operation_identity(route)
    if operation not in interceptor.quotas:
        return

    caller_address = resolve_caller_address(
        request,
        trust_forwarded_for=getattr(request.app.state, "throttle_trust_forwarded_for", False),
    )
    response = Response()
    if await interceptor.intercept(operation, caller_address, response):
        raise RequestRejected(response)
