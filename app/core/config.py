"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    return LogSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_throttle_settings() -> "ThrottleSettings":
    """Build throttle settings from environment.

    Pydantic Settings (v2) populates every field from THROTTLE_* variables,
    so the constructor is called without arguments.
    """

    return ThrottleSettings()


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format: structured JSON or plain text",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log lines are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on /v1 endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class ThrottleSettings(BaseSettings):
    """Throttling core configuration: storage backend and policy table."""

    enabled: bool = Field(
        True,
        description="Enforce throttling; when false every check is allowed without counting",
    )
    include_headers: bool = Field(
        True,
        description="Attach X-RateLimit-* headers to allowed responses",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as the caller address behind a proxy",
    )

    store_backend: Literal["memory", "postgrest"] = Field(
        "memory",
        description="Counter store backend",
    )
    store_url: str | None = Field(
        None,
        description="PostgREST root URL (e.g. https://<project>.supabase.co/rest/v1)",
    )
    store_api_key: str | None = Field(
        None,
        description="Service key sent as apikey and bearer token to PostgREST",
    )
    store_table: str = Field(
        "advanced_rate_limits",
        description="Table holding one counter row per identity and operation",
    )
    store_timeout_seconds: float = Field(
        5.0,
        description="Per-request timeout for counter store calls",
        gt=0,
    )

    compare_and_swap: bool = Field(
        False,
        description="Guard updates with the row version and retry on conflict",
    )
    cas_max_attempts: int = Field(
        3,
        description="Read-evaluate-write attempts per check in compare-and-swap mode",
        ge=1,
    )

    expensive_ai_max_requests: int = Field(20, ge=1)
    expensive_ai_window_seconds: float = Field(60, gt=0)
    expensive_ai_block_seconds: float | None = Field(300, gt=0)

    image_scan_max_requests: int = Field(30, ge=1)
    image_scan_window_seconds: float = Field(60, gt=0)
    image_scan_block_seconds: float | None = Field(180, gt=0)

    generic_api_max_requests: int = Field(100, ge=1)
    generic_api_window_seconds: float = Field(60, gt=0)
    generic_api_block_seconds: float | None = Field(120, gt=0)

    inbound_webhook_max_requests: int = Field(500, ge=1)
    inbound_webhook_window_seconds: float = Field(60, gt=0)
    inbound_webhook_block_seconds: float | None = Field(60, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="THROTTLE_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    throttle: ThrottleSettings = Field(default_factory=_build_throttle_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Nested settings are created via default_factory so env loading works.
settings = Settings()
