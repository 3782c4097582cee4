"""Quota discovery for FastAPI routes.

Endpoints declare their quota with the ``throttle`` decorator; at startup
``build_registry_from_routes`` walks the application's routes, merges static
overrides from settings and registers everything into a QuotaRegistry.

A malformed declaration never breaks startup: it is logged and the
operation is left unthrottled.

Usage:
    @router.get("/things/{thing_id}", name="get_thing")
    @throttle(per_minute=2)
    async def get_thing(thing_id: str): ...
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Iterator, Mapping, TypeVar

from fastapi.routing import APIRoute
from starlette.routing import BaseRoute

from apithrottle.core.errors import QuotaConfigError
from apithrottle.core.quota import quota_from_mapping
from apithrottle.core.registry import QuotaRegistry

logger = logging.getLogger(__name__)

THROTTLE_ATTR = "__throttle_declaration__"

F = TypeVar("F", bound=Callable[..., Any])


def throttle(
    *,
    per_minute: int = 0,
    per_hour: int = 0,
    per_day: int = 0,
    name: str | None = None,
) -> Callable[[F], F]:
    """Attach a quota declaration to an endpoint function.

    Validation is deferred to registry build time so a bad declaration
    degrades to "unthrottled" instead of failing at import.

    Args:
        per_minute: Requests allowed per minute window (0 = unconstrained).
        per_hour: Requests allowed per hour window (0 = unconstrained).
        per_day: Requests allowed per day window (0 = unconstrained).
        name: Operation identity; defaults to the route name.
    """

    def decorator(func: F) -> F:
        setattr(
            func,
            THROTTLE_ATTR,
            {
                "name": name,
                "limits": {"per_minute": per_minute, "per_hour": per_hour, "per_day": per_day},
            },
        )
        return func

    return decorator


def operation_identity(route: APIRoute) -> str:
    """Operation identity for a route: explicit throttle name, else route name."""
    declaration = getattr(route.endpoint, THROTTLE_ATTR, None)
    if declaration and declaration.get("name"):
        return declaration["name"]
    return route.name


def parse_quota_overrides(raw: str | None) -> dict[str, Any]:
    """Decode the APP_THROTTLE_QUOTAS JSON object.

    Returns an empty dict (and logs) when the value is missing or unreadable.
    """

    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("quota.overrides_invalid", extra={"reason": "invalid_json", "error": str(exc)})
        return {}
    if not isinstance(data, dict):
        logger.warning("quota.overrides_invalid", extra={"reason": "not_an_object"})
        return {}
    return data


def _register_safely(registry: QuotaRegistry, operation: str, limits: Any, source: str) -> None:
    try:
        registry.register(operation, quota_from_mapping(limits))
    except QuotaConfigError as exc:
        logger.warning(
            "quota.invalid",
            extra={
                "operation": operation,
                "source": source,
                "error_code": exc.code,
                "error_message": exc.message,
            },
        )


def iter_api_routes(routes: Iterable[BaseRoute]) -> Iterator[APIRoute]:
    """Yield every APIRoute reachable from routes, including included routers.

    Older FastAPI releases flatten included routers into the parent's route
    list; newer ones keep one wrapper per include holding the original
    router. Both shapes are walked. The APIRoute objects yielded are the
    ones FastAPI puts in scope["route"] when dispatching.
    """
    for route in routes:
        if isinstance(route, APIRoute):
            yield route
            continue
        included = getattr(route, "original_router", None)
        if included is not None:
            yield from iter_api_routes(included.routes)


def build_registry_from_routes(
    routes: Iterable[BaseRoute],
    overrides: Mapping[str, Any] | None = None,
) -> QuotaRegistry:
    """Build an unfrozen registry from decorated routes and static overrides.

    Overrides are applied after route declarations, so configuration can
    tighten, loosen, or add quotas without code changes.

    Args:
        routes: Application routes (non-API routes are ignored; included
            routers are walked recursively).
        overrides: Mapping of operation -> quota declaration mapping.

    Returns:
        QuotaRegistry ready to be frozen.
    """

    registry = QuotaRegistry()

    for route in iter_api_routes(routes):
        declaration = getattr(route.endpoint, THROTTLE_ATTR, None)
        if declaration is None:
            continue
        _register_safely(registry, operation_identity(route), declaration["limits"], "route")

    for operation, limits in (overrides or {}).items():
        _register_safely(registry, operation, limits, "settings")

    logger.info(
        "quota.registry_built",
        extra={"throttled_operations": len(registry)},
    )
    return registry
