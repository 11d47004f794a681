"""OpenAPI customization.

Adds the X-API-Key security scheme, documents the throttle headers on the
/v1 operations, and exempts the health probe from authentication.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "ISO-8601 time when the window resets or the block ends.",
        "schema": {"type": "string", "format": "date-time"},
    },
}

_TAGS = [
    {"name": "Throttle", "description": "Throttle decisions and the active policy catalog."},
    {"name": "Health", "description": "Liveness checks."},
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with security and header docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Service API key from APP_API_KEYS.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        known = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in known)

        for path, methods in schema.get("paths", {}).items():
            for operation in methods.values():
                if not isinstance(operation, dict):
                    continue
                if path.endswith("/health"):
                    operation["security"] = []
                    continue
                for code, response in operation.get("responses", {}).items():
                    if code in ("200", "429"):
                        headers = response.setdefault("headers", {})
                        headers.update(_RATE_LIMIT_HEADERS)
                        if code == "429":
                            headers["Retry-After"] = {
                                "description": "Seconds to wait before retrying.",
                                "schema": {"type": "integer"},
                            }

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
