"""Throttling dependencies for FastAPI routes.

This module wires the limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``require_throttle(...)`` only.
- Swap-friendly: the counter store is chosen by configuration behind an
  abstract interface.
- Policies are picked per route by operation class, never by request input.

Identity selection:
- ``request.state.user_id`` when an upstream auth layer set it.
- Otherwise the client address (first X-Forwarded-For hop when trusted).
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import Depends, Request, Response

from app.adapters.counter_store import AbstractCounterStore, create_counter_store
from app.core.config import settings
from app.core.errors import RateLimitExceededError
from app.services.limiter import Decision, Limiter, build_counter_key, hash_counter_key
from app.services.policy_catalog import OperationClass, PolicyCatalog, policy_settings
from app.services.response_shaper import build_rate_limit_headers
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


_store: AbstractCounterStore | None = None
_limiter: Limiter | None = None
_limiter_config: tuple | None = None
_catalog: PolicyCatalog | None = None
_catalog_config: tuple | None = None


def _store_config() -> tuple:
    cfg = settings.throttle
    return (
        cfg.store_backend,
        cfg.store_url,
        cfg.store_api_key,
        cfg.store_table,
        cfg.store_timeout_seconds,
        cfg.compare_and_swap,
        cfg.cas_max_attempts,
    )


def get_policy_catalog() -> PolicyCatalog:
    """Return the process-wide policy catalog.

    Rebuilt from settings whenever a THROTTLE_<CLASS>_* value changes,
    the same way get_limiter tracks the store configuration.
    """

    global _catalog, _catalog_config

    config = policy_settings(settings.throttle)
    if _catalog is None or _catalog_config != config:
        _catalog = PolicyCatalog.from_settings(settings.throttle)
        _catalog_config = config
    return _catalog


def get_limiter() -> Limiter:
    """Return a process-wide limiter instance.

    The instance is cached in-module so the in-memory store keeps its state
    across requests. If the store configuration changes (primarily in
    tests), the limiter and its store are rebuilt.

    Returns:
        Limiter: Configured limiter instance.
    """

    global _store, _limiter, _limiter_config

    config = _store_config()
    if _limiter is None or _limiter_config != config:
        _store = create_counter_store(settings.throttle)
        _limiter = Limiter(
            _store,
            compare_and_swap=settings.throttle.compare_and_swap,
            max_attempts=settings.throttle.cas_max_attempts,
        )
        _limiter_config = config

    return _limiter


async def close_counter_store() -> None:
    """Close the cached store and forget the limiter (app shutdown)."""

    global _store, _limiter, _limiter_config

    if _store is not None:
        await _store.aclose()
    _store = None
    _limiter = None
    _limiter_config = None


def resolve_identity(request: Request) -> tuple[str, str]:
    """Pick the throttling identity for the current request.

    Args:
        request: FastAPI request.

    Returns:
        Tuple of (identity, identifier_type) where identifier_type is
        "user" or "ip".
    """

    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id), "user"

    if settings.throttle.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop, "ip"

    client_host = request.client.host if request.client else "unknown"
    return client_host, "ip"


def require_throttle(
    operation: str,
    operation_class: OperationClass,
) -> Callable[..., Awaitable[Decision]]:
    """Build a FastAPI dependency gating a route.

    On approval the rate limit headers are attached to the response and the
    decision is stored on ``request.state.throttle_decision``. On denial a
    RateLimitExceededError is raised, which the exception handlers render as
    a 429 response.

    Usage:
        @router.post("/ai/chat", dependencies=[Depends(require_throttle("ai-chat", OperationClass.EXPENSIVE_AI))])
        async def chat(): ...

    Args:
        operation: Stable name of the gated action.
        operation_class: Class selecting the policy from the catalog.
    """

    async def enforce_throttle(
        request: Request,
        response: Response,
        limiter: Limiter = Depends(get_limiter),
        catalog: PolicyCatalog = Depends(get_policy_catalog),
    ) -> Decision:
        policy = catalog.get(operation_class)

        if not settings.throttle.enabled:
            decision = Decision.unthrottled(policy, utcnow())
            request.state.throttle_decision = decision
            return decision

        identity, identifier_type = resolve_identity(request)
        key_hash = hash_counter_key(build_counter_key(identity, operation))

        decision = await limiter.check(
            identity,
            operation,
            policy,
            identifier_type=identifier_type,
        )
        request.state.throttle_decision = decision

        if decision.allowed:
            logger.info(
                "throttle.allowed",
                extra={
                    "operation": operation,
                    "operation_class": operation_class.value,
                    "key_type": identifier_type,
                    "key_hash": key_hash,
                    "limit": policy.max_requests,
                    "remaining": decision.remaining,
                },
            )
            if settings.throttle.include_headers:
                response.headers.update(build_rate_limit_headers(decision))
            return decision

        logger.warning(
            "throttle.denied",
            extra={
                "operation": operation,
                "operation_class": operation_class.value,
                "key_type": identifier_type,
                "key_hash": key_hash,
                "limit": policy.max_requests,
                "retry_after_s": decision.retry_after,
            },
        )
        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Rate limit exceeded",
            details={"retry_after": decision.retry_after or 0},
            decision=decision,
        )

    return enforce_throttle
