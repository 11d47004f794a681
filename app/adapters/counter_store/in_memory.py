"""In-memory counter store.

Notes:
- Per-process only: running multiple workers gives each its own counters,
  which multiplies the effective quota. Use the PostgREST store for shared
  deployments.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Mapping

from app.adapters.counter_store.base import AbstractCounterStore, CounterRecord, validate_changes
from app.core.errors import CounterStoreConflictError


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping immutable records in a dict.

    Records are frozen dataclasses, so callers can never mutate stored state
    except through update().
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, CounterRecord] = {}

    async def get(self, key: str) -> CounterRecord | None:
        with self._lock:
            return self._records.get(key)

    async def create(self, key: str, initial: CounterRecord) -> None:
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            if key in self._records:
                raise CounterStoreConflictError(
                    code="counter_exists",
                    message=f"Counter record already exists for key '{key}'",
                )
            self._records[key] = replace(initial, key=key)

    async def update(
        self,
        key: str,
        changes: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        validate_changes(changes)

        with self._lock:
            current = self._records.get(key)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            self._records[key] = replace(current, **changes, version=current.version + 1)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
