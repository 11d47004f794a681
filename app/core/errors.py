"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from app.services.limiter import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    field: str
    min_value: float
    actual_value: Any
    http_status: int
    retry_after: int
    operation_class: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class CounterStoreError(AppError):
    """Raised when the counter store cannot be reached or rejects a call."""


class CounterStoreConflictError(CounterStoreError):
    """Raised when inserting a counter row whose key already exists."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the HTTP layer to short-circuit a throttled request.

    Carries the denial decision so the handler can render the 429 contract.
    """

    decision: "Decision | None" = None
