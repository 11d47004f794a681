"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import (
    JsonFormatter,
    SensitiveDataFilter,
    clear_request_id,
    redact,
    set_request_id,
)


@pytest.fixture
def capture():
    """Logger wired like configure_logging, writing JSON lines to a buffer."""

    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def _last_line(stream: StringIO) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


def test_redacts_store_credentials(capture) -> None:
    logger, stream = capture

    logger.info(
        "counter_store.configured",
        extra={"apikey": "svc-role-secret", "authorization": "Bearer svc-role-secret", "table": "advanced_rate_limits"},
    )

    output = stream.getvalue()
    assert "svc-role-secret" not in output
    assert _last_line(stream)["table"] == "advanced_rate_limits"


def test_redacts_caller_identity(capture) -> None:
    logger, stream = capture

    logger.warning(
        "throttle.denied",
        extra={"identity": "user-8f2c", "client_ip": "203.0.113.9", "key_hash": "ab12cd34ef56ab12"},
    )

    line = _last_line(stream)
    assert line["identity"] == "[REDACTED]"
    assert line["client_ip"] == "[REDACTED]"
    assert line["key_hash"] == "ab12cd34ef56ab12"


def test_throttle_fields_pass_through(capture) -> None:
    logger, stream = capture

    logger.info(
        "throttle.allowed",
        extra={"operation": "scan-receipt", "remaining": 29, "limit": 30},
    )

    line = _last_line(stream)
    assert line["message"] == "throttle.allowed"
    assert line["level"] == "info"
    assert line["operation"] == "scan-receipt"
    assert line["remaining"] == 29
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context(capture) -> None:
    logger, stream = capture
    set_request_id("req-123")

    logger.info("throttle.allowed")

    assert _last_line(stream)["request_id"] == "req-123"


def test_redact_walks_nested_values() -> None:
    value = {
        "headers": {"X-API-Key": "k-1", "user-agent": "edge-runtime"},
        "hops": [{"x-forwarded-for": "198.51.100.1"}],
    }

    assert redact(value) == {
        "headers": {"X-API-Key": "[REDACTED]", "user-agent": "edge-runtime"},
        "hops": [{"x-forwarded-for": "[REDACTED]"}],
    }
