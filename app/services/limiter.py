"""Fixed-window request limiter with escalating blocks.

Each (identity, operation) pair owns one counter row. Requests are counted
in a fixed window; exceeding the quota blocks the key for the policy's block
duration multiplied by the number of consecutive violations (capped at 5x).

Failure policy:
- Store read fails: fail open. The gated feature stays available while the
  store is unhealthy.
- Store write fails after a decision was computed: the decision stands,
  only future counts may drift.

Concurrency:
- By default the read-evaluate-write sequence is not atomic; two concurrent
  requests for the same key can both read the same count and one increment
  is lost.
- With ``compare_and_swap=True`` every write is guarded by the row version
  and the whole sequence is retried on conflict.
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from app.adapters.counter_store.base import AbstractCounterStore, CounterRecord
from app.core.errors import CounterStoreConflictError, CounterStoreError
from app.services.policy_catalog import ThrottlePolicy
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

MAX_BLOCK_MULTIPLIER = 5


@dataclass(frozen=True)
class Decision:
    """Outcome of a throttle check.

    Attributes:
        allowed: Whether the caller may proceed.
        remaining: Requests left in the current window (0 when denied).
        reset_at: When the window resets, or the block expires when denied.
        retry_after: Whole seconds to wait before retrying, set on denials.
    """

    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after: int | None = None

    @classmethod
    def unthrottled(cls, policy: ThrottlePolicy, now: datetime) -> "Decision":
        """Allow without counting (fail-open or throttling disabled)."""
        return cls(allowed=True, remaining=policy.max_requests, reset_at=now)


@dataclass(frozen=True)
class _Transition:
    decision: Decision
    initial: CounterRecord | None = None
    changes: dict[str, Any] | None = None


def build_counter_key(identity: str, operation: str) -> str:
    return f"{identity}:{operation}"


def hash_counter_key(key: str) -> str:
    """Hash the counter key for logging without exposing the identity."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def evaluate(
    record: CounterRecord | None,
    *,
    key: str,
    now: datetime,
    policy: ThrottlePolicy,
    identifier_type: str = "user",
) -> _Transition:
    """Compute the decision and the write it implies for one request.

    Pure function of the current record, the clock and the policy.
    """
    window = policy.window

    if record is None:
        initial = CounterRecord(
            key=key,
            window_start=now,
            request_count=1,
            identifier_type=identifier_type,
        )
        return _Transition(
            decision=Decision(True, policy.max_requests - 1, now + window),
            initial=initial,
        )

    if record.is_blocked and record.block_expires_at is not None and record.block_expires_at > now:
        retry_after = math.ceil((record.block_expires_at - now).total_seconds())
        return _Transition(
            decision=Decision(False, 0, record.block_expires_at, retry_after),
        )

    if record.window_start is None or record.window_start < now - window:
        changes: dict[str, Any] = {
            "request_count": 1,
            "window_start": now,
            "is_blocked": False,
            "block_expires_at": None,
        }
        # A row still flagged as blocked ended its last window in a violation,
        # so the violation chain carries over into the new window.
        if not record.is_blocked:
            changes["consecutive_violations"] = 0
        return _Transition(
            decision=Decision(True, policy.max_requests - 1, now + window),
            changes=changes,
        )

    new_count = record.request_count + 1

    if new_count > policy.max_requests:
        consecutive = record.consecutive_violations + 1
        block = policy.block * min(consecutive, MAX_BLOCK_MULTIPLIER)
        block_expires_at = now + block
        return _Transition(
            decision=Decision(
                False,
                0,
                block_expires_at,
                math.ceil(block.total_seconds()),
            ),
            changes={
                "request_count": new_count,
                "is_blocked": True,
                "block_expires_at": block_expires_at,
                "consecutive_violations": consecutive,
                "total_violations": record.total_violations + 1,
            },
        )

    return _Transition(
        decision=Decision(
            True,
            policy.max_requests - new_count,
            record.window_start + window,
        ),
        changes={"request_count": new_count},
    )


class Limiter:
    """Decides allow/deny per request and keeps the counter rows current."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        compare_and_swap: bool = False,
        max_attempts: int = 3,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter storage backend.
            clock: Time source returning an aware UTC datetime.
            compare_and_swap: Guard writes with the row version and retry on conflict.
            max_attempts: Read-evaluate-write attempts per check in CAS mode.

        Raises:
            ValueError: If max_attempts is below 1.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._store = store
        self._clock = clock
        self._compare_and_swap = compare_and_swap
        self._max_attempts = max_attempts if compare_and_swap else 1

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    async def check(
        self,
        identity: str,
        operation: str,
        policy: ThrottlePolicy,
        *,
        identifier_type: str = "user",
    ) -> Decision:
        """Count one request for (identity, operation) and decide.

        Args:
            identity: Authenticated caller id, or network address when anonymous.
            operation: Stable name of the gated action (e.g. "ai-chat").
            policy: Policy looked up from the catalog by the caller.
            identifier_type: "user" or "ip", stored on newly created rows.

        Returns:
            Decision for this request.

        Raises:
            ValueError: If identity or operation is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")
        if not operation:
            raise ValueError("operation must be a non-empty string")

        key = build_counter_key(identity, operation)
        key_hash = hash_counter_key(key)

        for attempt in range(1, self._max_attempts + 1):
            now = self._clock()
            try:
                record = await self._store.get(key)
            except CounterStoreError as exc:
                logger.warning(
                    "throttle.store_read_failed",
                    extra={
                        "operation": operation,
                        "key_hash": key_hash,
                        "error_code": exc.code,
                        "error_message": exc.message,
                    },
                )
                return Decision.unthrottled(policy, now)

            transition = evaluate(
                record,
                key=key,
                now=now,
                policy=policy,
                identifier_type=identifier_type,
            )
            if await self._persist(key, record, transition, operation=operation, key_hash=key_hash):
                self._log_decision(transition, operation=operation, key_hash=key_hash)
                return transition.decision

            logger.info(
                "throttle.write_conflict",
                extra={"operation": operation, "key_hash": key_hash, "attempt": attempt},
            )

        logger.warning(
            "throttle.conflict_retries_exhausted",
            extra={"operation": operation, "key_hash": key_hash, "attempts": self._max_attempts},
        )
        return transition.decision

    async def _persist(
        self,
        key: str,
        record: CounterRecord | None,
        transition: _Transition,
        *,
        operation: str,
        key_hash: str,
    ) -> bool:
        """Write the transition; return False only on a CAS conflict."""
        try:
            if transition.initial is not None:
                await self._store.create(key, transition.initial)
                return True
            if transition.changes is not None and record is not None:
                expected = record.version if self._compare_and_swap else None
                applied = await self._store.update(key, transition.changes, expected_version=expected)
                return applied or not self._compare_and_swap
            return True
        except CounterStoreConflictError:
            if self._compare_and_swap:
                return False
            logger.error(
                "throttle.store_write_failed",
                extra={"operation": operation, "key_hash": key_hash, "error_code": "counter_exists"},
            )
            return True
        except CounterStoreError as exc:
            logger.error(
                "throttle.store_write_failed",
                extra={
                    "operation": operation,
                    "key_hash": key_hash,
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return True

    def _log_decision(
        self,
        transition: _Transition,
        *,
        operation: str,
        key_hash: str,
    ) -> None:
        decision = transition.decision
        if decision.allowed:
            return
        if transition.changes is None:
            logger.info(
                "throttle.still_blocked",
                extra={"operation": operation, "key_hash": key_hash, "retry_after_s": decision.retry_after},
            )
            return
        logger.warning(
            "throttle.blocked",
            extra={
                "operation": operation,
                "key_hash": key_hash,
                "consecutive_violations": transition.changes["consecutive_violations"],
                "blocked_until": decision.reset_at.isoformat(),
                "retry_after_s": decision.retry_after,
            },
        )
