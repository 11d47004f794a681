from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build fresh instances.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import health_router, throttle_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.throttle import close_counter_store, get_limiter, get_policy_catalog


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_counter_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    The policy catalog and counter store are built here so a misconfigured
    policy or store fails at startup rather than on the first request.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    get_policy_catalog()
    get_limiter()

    app = FastAPI(
        title="Throttle Guard API",
        description=(
            "Request throttling for expensive backend operations (AI chat, AI "
            "risk scoring, receipt scanning, inbound webhooks). Counts requests "
            "per caller and operation in a fixed window and blocks repeat "
            "offenders with escalating penalties."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(throttle_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
