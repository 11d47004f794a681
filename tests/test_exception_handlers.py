"""Tests for global exception handlers.

Validates that domain errors map to the right HTTP status codes, that
throttled requests render the 429 contract, and that unexpected errors
never leak internals.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    CounterStoreError,
    RateLimitExceededError,
    ValidationAppError,
)
from app.core.exception_handlers import general_exception_handler, setup_exception_handlers
from app.services.limiter import Decision


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationAppError(code="unknown_operation_class", message="Unknown class"), 400),
            (AuthenticationAppError(code="invalid_api_key", message="Invalid key"), 403),
            (CounterStoreError(code="counter_store_unavailable", message="Store down"), 503),
        ],
    )
    def test_status_mapping(self, client, app_with_handlers, error, status_code) -> None:
        @app_with_handlers.get("/boom")
        async def boom():
            raise error

        response = client.get("/boom")

        assert response.status_code == status_code
        data = response.json()
        assert data["error"]["code"] == error.code
        assert data["error"]["message"] == error.message
        assert "request_id" in data["error"]

    def test_details_included_when_present(self, client, app_with_handlers) -> None:
        @app_with_handlers.get("/details")
        async def details():
            raise ValidationAppError(
                code="invalid_throttle_policy",
                message="max_requests must be >= 1",
                details={"field": "max_requests", "actual_value": 0},
            )

        data = client.get("/details").json()

        assert data["error"]["details"] == {"field": "max_requests", "actual_value": 0}


class TestRateLimitHandler:
    def test_renders_denial_contract(self, client, app_with_handlers) -> None:
        decision = Decision(
            allowed=False,
            remaining=0,
            reset_at=datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc),
            retry_after=42,
        )

        @app_with_handlers.get("/throttled")
        async def throttled():
            raise RateLimitExceededError(
                code="rate_limit_exceeded", message="Rate limit exceeded", decision=decision
            )

        response = client.get("/throttled")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Reset"] == "2024-01-01T12:05:00.000Z"
        assert response.json()["retryAfter"] == 42

    def test_without_decision_falls_back_to_error_body(self, client, app_with_handlers) -> None:
        @app_with_handlers.get("/bare")
        async def bare():
            raise RateLimitExceededError(code="rate_limit_exceeded", message="Rate limit exceeded")

        response = client.get("/bare")

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "rate_limit_exceeded"


class TestGeneralExceptionHandler:
    def test_unexpected_error_is_generic_500(self) -> None:
        request = AsyncMock()
        request.url.path = "/v1/throttle/check"
        request.method = "POST"

        response = asyncio.run(
            general_exception_handler(request, RuntimeError("pool exhausted at db-1:5432"))
        )

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "db-1" not in data["error"]["message"]
        assert "RuntimeError" not in bytes(response.body).decode()

    def test_unexpected_error_via_client(self, client, app_with_handlers) -> None:
        @app_with_handlers.get("/crash")
        async def crash():
            raise KeyError("secret")

        response = client.get("/crash")

        assert response.status_code == 500
        assert "secret" not in response.text


def test_setup_registers_handlers(app_with_handlers: FastAPI) -> None:
    assert RateLimitExceededError in app_with_handlers.exception_handlers
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
