from __future__ import annotations

from apithrottle.api.routes.health import router as health_router

__all__ = ["health_router"]
