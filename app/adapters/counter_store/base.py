"""Counter store interfaces.

The limiter depends on this abstraction (not the concrete implementation)
so the backing table can live in-process or behind a network API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class CounterRecord:
    """One counting row per (identity, operation) pair.

    Attributes:
        key: ``identity:operation`` composite, unique per row.
        window_start: Start of the current counting window.
        request_count: Requests observed in the current window.
        is_blocked: Whether a block was imposed (it may have lapsed since).
        block_expires_at: End of the block, set only while blocked.
        consecutive_violations: Violations in the current chain, drives escalation.
        total_violations: Lifetime violations, never reset.
        identifier_type: "user" for authenticated ids, "ip" for addresses.
        version: Bumped by the store on every update.
    """

    key: str
    window_start: datetime | None
    request_count: int = 0
    is_blocked: bool = False
    block_expires_at: datetime | None = None
    consecutive_violations: int = 0
    total_violations: int = 0
    identifier_type: str = "user"
    version: int = 0


MUTABLE_FIELDS = frozenset(f.name for f in fields(CounterRecord)) - {"key", "version"}


def validate_changes(changes: Mapping[str, Any]) -> None:
    """Reject update payloads naming unknown or immutable fields."""
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"cannot update counter fields: {sorted(unknown)}")


class AbstractCounterStore(ABC):
    """Interface for durable counter storage.

    Every call may fail with CounterStoreError; implementations never retry
    internally so the caller decides the failure policy.
    """

    @abstractmethod
    async def get(self, key: str) -> CounterRecord | None:
        """Fetch the record for key, or None when no row exists."""
        raise NotImplementedError

    @abstractmethod
    async def create(self, key: str, initial: CounterRecord) -> None:
        """Insert the first record for key.

        Raises:
            CounterStoreConflictError: If a row already exists for key.
        """
        raise NotImplementedError

    @abstractmethod
    async def update(
        self,
        key: str,
        changes: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        """Apply changes to the record for key.

        Args:
            key: Record key.
            changes: Field name to new value, using CounterRecord names.
            expected_version: When set, only update if the stored version matches.

        Returns:
            True if a row was updated, False if it was missing or the version
            guard did not match.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any network resources held by the store."""
        return None
