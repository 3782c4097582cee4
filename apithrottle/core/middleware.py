"""Correlation of throttling decisions with the responses they produced.

Every ``throttle.denied`` / ``throttle.store_unavailable`` log line carries
the request id of the request being evaluated, and the same id is echoed in
the response header, so a client holding a 429 can be matched to the
decision that rejected it.

Usage:
    app.middleware("http")(correlation_middleware("X-Request-ID"))
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response, status

from apithrottle.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

DURATION_HEADER = "X-Request-Duration-ms"

CallNext = Callable[[Request], Awaitable[Response]]


def correlation_middleware(header_name: str) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """Build the HTTP middleware binding a request id to one request.

    The incoming ``header_name`` value is reused when present, otherwise a
    UUID4 is generated. Registered outermost by create_app, so throttle
    rejections are wrapped too and get a ``throttle.rejected`` log line with
    the route path and duration.

    Args:
        header_name: Header carrying the request id in and out.
    """

    async def middleware(request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            if response.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
                logger.info(
                    "throttle.rejected",
                    extra={
                        "request_id": request_id,
                        "path": request.url.path,
                        "duration_ms": round(duration_ms, 2),
                    },
                )
        finally:
            clear_request_id()

        response.headers[header_name] = request_id
        response.headers.setdefault(DURATION_HEADER, f"{duration_ms:.2f}")
        return response

    return middleware
