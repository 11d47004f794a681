"""Translate limiter decisions into HTTP headers and 429 responses."""

from __future__ import annotations

from typing import Any, Mapping

from fastapi import status
from fastapi.responses import JSONResponse

from app.services.limiter import Decision
from app.utils.timestamps import to_iso


def build_rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Build X-RateLimit-* headers, plus Retry-After on denials.

    Examples:
        >>> from datetime import datetime, timezone
        >>> build_rate_limit_headers(Decision(True, 4, datetime(2024, 1, 1, tzinfo=timezone.utc)))
        {'X-RateLimit-Remaining': '4', 'X-RateLimit-Reset': '2024-01-01T00:00:00.000Z'}
    """
    headers = {
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": to_iso(decision.reset_at),
    }
    if decision.retry_after:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


def build_rate_limit_payload(decision: Decision) -> dict[str, Any]:
    return {
        "error": "Rate limit exceeded",
        "message": f"Too many requests. Please try again in {decision.retry_after} seconds.",
        "retryAfter": decision.retry_after,
    }


def rate_limit_exceeded_response(
    decision: Decision,
    extra_headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render a denial as a 429 JSON response.

    Args:
        decision: Denied decision from the limiter.
        extra_headers: Caller headers (e.g. CORS) merged under the rate limit ones.

    Returns:
        JSONResponse with the denial payload and rate limit headers.
    """
    headers = dict(extra_headers or {})
    headers.update(build_rate_limit_headers(decision))
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=build_rate_limit_payload(decision),
        headers=headers,
    )
