"""PostgREST counter store adapter.

Stores counters in a Postgres table exposed through PostgREST (for example a
Supabase project's ``/rest/v1`` endpoint). The table layout is declared in
``sql/advanced_rate_limits.sql``; a trigger bumps ``version`` on every update.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

import httpx

from app.adapters.counter_store.base import AbstractCounterStore, CounterRecord, validate_changes
from app.core.errors import CounterStoreConflictError, CounterStoreError
from app.utils.timestamps import parse_iso, to_iso

logger = logging.getLogger(__name__)


def _record_from_row(row: Mapping[str, Any]) -> CounterRecord:
    """Convert a table row into a CounterRecord, treating NULL counters as 0."""
    return CounterRecord(
        key=row["identifier"],
        window_start=parse_iso(row.get("window_start")),
        request_count=row.get("request_count") or 0,
        is_blocked=bool(row.get("is_blocked")),
        block_expires_at=parse_iso(row.get("block_expires_at")),
        consecutive_violations=row.get("consecutive_violations") or 0,
        total_violations=row.get("total_violations") or 0,
        identifier_type=row.get("identifier_type") or "user",
        version=row.get("version") or 0,
    )


def _serialize(changes: Mapping[str, Any]) -> dict[str, Any]:
    return {
        name: to_iso(value) if isinstance(value, datetime) else value
        for name, value in changes.items()
    }


class PostgrestCounterStore(AbstractCounterStore):
    """Counter store backed by a PostgREST table over HTTP."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        table: str = "advanced_rate_limits",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the PostgREST client.

        Args:
            base_url: PostgREST root URL, e.g. ``https://x.supabase.co/rest/v1``.
            api_key: Service key sent both as ``apikey`` and bearer token.
            table: Counter table name.
            timeout_seconds: Per-request timeout.
            client: Pre-built client (tests inject one with a mock transport).
        """
        self._table = table
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, key: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, f"/{self._table}", **kwargs)
        except httpx.HTTPError as exc:
            raise CounterStoreError(
                code="counter_store_unavailable",
                message=f"Counter store {method} failed: {exc}",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc

        if response.status_code == 409:
            raise CounterStoreConflictError(
                code="counter_exists",
                message=f"Counter record already exists for key '{key}'",
                details={"http_status": 409},
            )
        if response.status_code >= 400:
            raise CounterStoreError(
                code="counter_store_rejected",
                message=f"Counter store {method} returned HTTP {response.status_code}",
                details={"http_status": response.status_code},
            )
        return response

    @staticmethod
    def _decode_rows(method: str, response: httpx.Response) -> list[Any]:
        """Return the JSON row list of a 2xx response.

        Raises:
            CounterStoreError: If the body is not a JSON array.
        """
        try:
            rows = response.json()
        except ValueError as exc:
            raise CounterStoreError(
                code="counter_store_bad_response",
                message=f"Counter store {method} returned a non-JSON body",
                details={"http_status": response.status_code},
            ) from exc
        if not isinstance(rows, list):
            raise CounterStoreError(
                code="counter_store_bad_response",
                message=f"Counter store {method} returned {type(rows).__name__}, expected a row list",
                details={"http_status": response.status_code},
            )
        return rows

    async def get(self, key: str) -> CounterRecord | None:
        response = await self._request(
            "GET",
            key,
            params={"identifier": f"eq.{key}", "select": "*", "limit": "1"},
        )
        rows = self._decode_rows("GET", response)
        if not rows:
            return None
        try:
            return _record_from_row(rows[0])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CounterStoreError(
                code="counter_store_bad_response",
                message=f"Counter store GET returned a malformed row: {exc}",
                details={"http_status": response.status_code},
            ) from exc

    async def create(self, key: str, initial: CounterRecord) -> None:
        row = _serialize(
            {
                "window_start": initial.window_start,
                "request_count": initial.request_count,
                "is_blocked": initial.is_blocked,
                "block_expires_at": initial.block_expires_at,
                "consecutive_violations": initial.consecutive_violations,
                "total_violations": initial.total_violations,
                "identifier_type": initial.identifier_type,
            }
        )
        row["identifier"] = key
        await self._request("POST", key, json=row, headers={"Prefer": "return=minimal"})

    async def update(
        self,
        key: str,
        changes: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        validate_changes(changes)

        params = {"identifier": f"eq.{key}"}
        if expected_version is not None:
            params["version"] = f"eq.{expected_version}"

        response = await self._request(
            "PATCH",
            key,
            params=params,
            json=_serialize(changes),
            headers={"Prefer": "return=representation"},
        )
        updated = self._decode_rows("PATCH", response)
        if not updated:
            logger.debug(
                "counter_store.update_missed",
                extra={"version_guarded": expected_version is not None},
            )
        return bool(updated)

    async def aclose(self) -> None:
        await self._client.aclose()
