from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Never throttled.
    """

    return {"status": "ok"}


@router.get("/health/throttle")
def throttle_status(request: Request) -> dict:
    """Describe the active throttling setup.

    Returns:
        dict: enabled flag, counter store backend and the operations that
        carry a quota, with their limits.
    """

    interceptor = getattr(request.app.state, "throttle_interceptor", None)
    if interceptor is None:
        return {"enabled": False, "backend": None, "throttled_operations": {}}

    return {
        "enabled": True,
        "backend": interceptor.store.name,
        "throttled_operations": {
            operation: quota.as_dict() for operation, quota in sorted(interceptor.quotas.items())
        },
    }
