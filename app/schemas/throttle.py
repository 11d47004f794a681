"""Pydantic schemas for the throttle service endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.services.limiter import Decision
from app.services.policy_catalog import OperationClass, ThrottlePolicy


class ThrottleCheckRequest(BaseModel):
    """Ask whether a caller may run a gated operation now."""

    identity: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Authenticated caller id, or network address for anonymous callers.",
    )
    operation: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Stable name of the gated action, e.g. 'ai-chat' or 'scan-receipt'.",
    )
    operation_class: OperationClass = Field(
        ..., description="Class selecting the throttling policy."
    )
    identifier_type: Literal["user", "ip"] = Field(
        "user", description="Kind of identity, recorded on newly created counters."
    )


class ThrottleDecisionResponse(BaseModel):
    """Decision returned for an allowed check."""

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    remaining: int = Field(..., description="Requests left in the current window.")
    reset_at: datetime = Field(..., alias="resetAt", description="When the window resets.")
    retry_after: int | None = Field(
        None, alias="retryAfter", description="Seconds to wait before retrying (denials only)."
    )

    @classmethod
    def from_decision(cls, decision: Decision) -> "ThrottleDecisionResponse":
        return cls(
            allowed=decision.allowed,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            retry_after=decision.retry_after,
        )


class RateLimitErrorResponse(BaseModel):
    """Body of a 429 response."""

    error: str = Field("Rate limit exceeded")
    message: str
    retry_after: int = Field(..., alias="retryAfter")


class ThrottlePolicyResponse(BaseModel):
    """One entry of the active policy catalog."""

    operation_class: OperationClass
    max_requests: int
    window_seconds: float
    block_seconds: float

    @classmethod
    def from_policy(
        cls, operation_class: OperationClass, policy: ThrottlePolicy
    ) -> "ThrottlePolicyResponse":
        return cls(
            operation_class=operation_class,
            max_requests=policy.max_requests,
            window_seconds=policy.window_seconds,
            block_seconds=policy.block_seconds,
        )
