from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.auth import verify_api_key
from app.core.config import settings
from app.core.throttle import get_limiter, get_policy_catalog
from app.schemas.throttle import (
    RateLimitErrorResponse,
    ThrottleCheckRequest,
    ThrottleDecisionResponse,
    ThrottlePolicyResponse,
)
from app.services.limiter import Decision, Limiter
from app.services.policy_catalog import PolicyCatalog
from app.services.response_shaper import build_rate_limit_headers, rate_limit_exceeded_response
from app.utils.timestamps import utcnow

router = APIRouter(tags=["Throttle"], dependencies=[Depends(verify_api_key)])


@router.post(
    "/throttle/check",
    response_model=ThrottleDecisionResponse,
    responses={429: {"model": RateLimitErrorResponse, "description": "Rate limit exceeded"}},
)
async def check_throttle(
    body: ThrottleCheckRequest,
    limiter: Limiter = Depends(get_limiter),
    catalog: PolicyCatalog = Depends(get_policy_catalog),
):
    """Count one request for the caller and decide whether it may proceed.

    Remote gated operations call this before doing any expensive work. The
    policy comes from the operation class, so callers cannot pick their own
    quota.

    Returns:
        200 with the decision and X-RateLimit-* headers when allowed, or the
        429 denial body with Retry-After when throttled.
    """
    policy = catalog.get(body.operation_class)

    if settings.throttle.enabled:
        decision = await limiter.check(
            body.identity,
            body.operation,
            policy,
            identifier_type=body.identifier_type,
        )
    else:
        decision = Decision.unthrottled(policy, utcnow())

    if not decision.allowed:
        return rate_limit_exceeded_response(decision)

    return JSONResponse(
        content=ThrottleDecisionResponse.from_decision(decision).model_dump(
            mode="json", by_alias=True
        ),
        headers=build_rate_limit_headers(decision),
    )


@router.get("/throttle/policies", response_model=list[ThrottlePolicyResponse])
async def list_policies(
    catalog: PolicyCatalog = Depends(get_policy_catalog),
) -> list[ThrottlePolicyResponse]:
    """List the active throttling policy per operation class."""
    return [
        ThrottlePolicyResponse.from_policy(operation_class, policy)
        for operation_class, policy in catalog.items()
    ]
