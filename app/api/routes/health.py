from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe for load balancers.

    Reports the configured counter store backend but never touches it, so a
    store outage (during which checks fail open) does not fail the probe.
    """

    return {
        "status": "ok",
        "throttle_enabled": settings.throttle.enabled,
        "store_backend": settings.throttle.store_backend,
    }
