"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers, throttling
startup) so tests and host applications build identical stacks.

Startup (lifespan) is the one-time registration phase: the quota registry is
built from the app's routes plus static overrides, frozen, and handed to the
throttle interceptor together with a prepared counter store.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable

from fastapi import APIRouter, Depends, FastAPI

from apithrottle.adapters.counter_store import AbstractCounterStore, create_counter_store
from apithrottle.api.routes import health_router
from apithrottle.core.config import Settings, settings as default_settings
from apithrottle.core.discovery import build_registry_from_routes, parse_quota_overrides
from apithrottle.core.exception_handlers import setup_exception_handlers
from apithrottle.core.logging import configure_logging
from apithrottle.core.middleware import correlation_middleware
from apithrottle.core.throttle import ThrottleInterceptor, enforce_throttle

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {
        "name": "Health",
        "description": "Liveness checks and throttling status.",
    },
]


async def start_throttling(
    app: FastAPI,
    cfg: Settings,
    *,
    store: AbstractCounterStore | None = None,
    clock: Callable[[], float] = time.time,
) -> None:
    """Build the registry, prepare the store and install the interceptor.

    Args:
        app: Application whose routes declare quotas.
        cfg: Settings to read throttling configuration from.
        store: Counter store to use; built from settings when omitted.
        clock: Time source for window bucketing.
    """

    app.state.throttle_trust_forwarded_for = cfg.app.throttle_trust_forwarded_for
    app.state.throttle_backend = None

    if not cfg.app.throttle_enabled:
        app.state.quota_registry = None
        app.state.throttle_interceptor = None
        logger.info("throttle.disabled")
        return

    registry = build_registry_from_routes(
        app.routes,
        parse_quota_overrides(cfg.app.throttle_quotas),
    )
    snapshot = registry.freeze()

    if store is None:
        store = create_counter_store(cfg)
    await store.prepare()

    app.state.quota_registry = registry
    app.state.counter_store = store
    app.state.throttle_backend = store.name
    app.state.throttle_interceptor = ThrottleInterceptor(snapshot, store, clock=clock)
    logger.info(
        "throttle.enabled",
        extra={"backend": store.name, "throttled_operations": len(snapshot)},
    )


async def stop_throttling(app: FastAPI) -> None:
    store: AbstractCounterStore | None = getattr(app.state, "counter_store", None)
    if store is not None:
        await store.close()
    app.state.throttle_interceptor = None


def create_app(
    *,
    routers: Iterable[APIRouter] = (),
    cfg: Settings | None = None,
    store: AbstractCounterStore | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        routers: Host API routers; endpoints opt into quotas with @throttle.
        cfg: Settings override (defaults to the global settings).
        store: Counter store override (defaults to APP_THROTTLE_BACKEND).
        clock: Time source for window bucketing.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = cfg or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await start_throttling(app, cfg, store=store, clock=clock)
        try:
            yield
        finally:
            await stop_throttling(app)

    app = FastAPI(
        title="API Throttle",
        description=(
            "Per-operation request throttling with minute, hour and day quotas "
            "enforced against a shared Redis counter store."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        openapi_tags=OPENAPI_TAGS,
        lifespan=lifespan,
        dependencies=[Depends(enforce_throttle)],
    )

    app.middleware("http")(correlation_middleware(cfg.log.request_id_header))

    setup_exception_handlers(app)

    app.include_router(health_router)
    for router in routers:
        app.include_router(router)

    return app
