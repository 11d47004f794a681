"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded and pins the settings the
throttle tests rely on.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("THROTTLE_STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")


class FakeClock:
    """Controllable UTC clock for limiter tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.origin = self.now

    def __call__(self) -> datetime:
        return self.now

    def at(self, seconds: float) -> "FakeClock":
        """Move to ``seconds`` after the starting instant."""
        self.now = self.origin + timedelta(seconds=seconds)
        return self

    def advance(self, seconds: float) -> "FakeClock":
        self.now = self.now + timedelta(seconds=seconds)
        return self


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
