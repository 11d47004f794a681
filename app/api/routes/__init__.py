from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.throttle import router as throttle_router

__all__ = ["health_router", "throttle_router"]
