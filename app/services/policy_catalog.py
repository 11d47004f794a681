"""Throttling policies per operation class.

A gated operation picks its class from what it does (AI call, image scan,
...), never from request input, so a caller cannot choose its own leniency.
A catalog is built from injected settings and is read-only afterwards.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping

from app.core.config import ThrottleSettings
from app.core.errors import ValidationAppError


class OperationClass(str, Enum):
    """Classes of gated operations sharing one throttling policy."""

    EXPENSIVE_AI = "expensive-ai"
    IMAGE_SCAN = "image-scan"
    GENERIC_API = "generic-api"
    INBOUND_WEBHOOK = "inbound-webhook"


def _check_duration(field: str, value: object) -> None:
    """Durations must be finite positive numbers of seconds."""
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value <= 0
    ):
        raise ValidationAppError(
            code="invalid_throttle_policy",
            message=f"{field} must be a finite number > 0",
            details={"field": field, "actual_value": value},
        )


@dataclass(frozen=True)
class ThrottlePolicy:
    """Quota and penalty for one operation class.

    Attributes:
        max_requests: Requests allowed per window.
        window_seconds: Length of the counting window.
        block_seconds: Base block duration once the quota is exceeded.
            Defaults to twice the window when omitted.

    Raises:
        ValidationAppError: If max_requests is not a positive integer or a
            duration is not a finite positive number.
    """

    max_requests: int
    window_seconds: float
    block_seconds: float | None = None

    def __post_init__(self) -> None:
        if (
            isinstance(self.max_requests, bool)
            or not isinstance(self.max_requests, int)
            or self.max_requests < 1
        ):
            raise ValidationAppError(
                code="invalid_throttle_policy",
                message="max_requests must be an integer >= 1",
                details={"field": "max_requests", "min_value": 1, "actual_value": self.max_requests},
            )
        _check_duration("window_seconds", self.window_seconds)
        if self.block_seconds is None:
            object.__setattr__(self, "block_seconds", self.window_seconds * 2)
        else:
            _check_duration("block_seconds", self.block_seconds)

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)

    @property
    def block(self) -> timedelta:
        return timedelta(seconds=self.block_seconds or self.window_seconds * 2)


def _setting_names(operation_class: OperationClass) -> tuple[str, str, str]:
    """Return the THROTTLE_* field names holding one class's policy."""
    prefix = operation_class.value.replace("-", "_")
    return (
        f"{prefix}_max_requests",
        f"{prefix}_window_seconds",
        f"{prefix}_block_seconds",
    )


def policy_settings(throttle_settings: ThrottleSettings) -> tuple:
    """Flatten every per-class policy setting into one comparable tuple."""
    return tuple(
        getattr(throttle_settings, name)
        for operation_class in OperationClass
        for name in _setting_names(operation_class)
    )


# The ThrottleSettings field defaults are the one place the default table is spelled out.
DEFAULT_POLICIES: Mapping[OperationClass, ThrottlePolicy] = MappingProxyType(
    {
        operation_class: ThrottlePolicy(
            *(ThrottleSettings.model_fields[name].default for name in _setting_names(operation_class))
        )
        for operation_class in OperationClass
    }
)


class PolicyCatalog:
    """Read-only mapping from operation class to policy."""

    def __init__(self, policies: Mapping[OperationClass, ThrottlePolicy] | None = None) -> None:
        merged = dict(DEFAULT_POLICIES)
        for operation_class, policy in (policies or {}).items():
            if not isinstance(policy, ThrottlePolicy):
                raise ValidationAppError(
                    code="invalid_throttle_policy",
                    message=f"Policy for '{operation_class}' must be a ThrottlePolicy",
                    details={"operation_class": str(operation_class)},
                )
            merged[OperationClass(operation_class)] = policy
        self._policies: Mapping[OperationClass, ThrottlePolicy] = MappingProxyType(merged)

    @classmethod
    def from_settings(cls, throttle_settings: ThrottleSettings) -> "PolicyCatalog":
        """Build the catalog from THROTTLE_<CLASS>_* settings."""
        policies = {}
        for operation_class in OperationClass:
            max_requests, window_seconds, block_seconds = _setting_names(operation_class)
            policies[operation_class] = ThrottlePolicy(
                max_requests=getattr(throttle_settings, max_requests),
                window_seconds=getattr(throttle_settings, window_seconds),
                block_seconds=getattr(throttle_settings, block_seconds),
            )
        return cls(policies)

    def get(self, operation_class: OperationClass | str) -> ThrottlePolicy:
        """Return the policy for a class, given as enum or its string value.

        Raises:
            ValidationAppError: If the class is unknown.
        """
        try:
            return self._policies[OperationClass(operation_class)]
        except ValueError as exc:
            raise ValidationAppError(
                code="unknown_operation_class",
                message=f"Unknown operation class: '{operation_class}'",
                details={"operation_class": str(operation_class)},
            ) from exc

    def __iter__(self) -> Iterator[OperationClass]:
        return iter(self._policies)

    def items(self):
        return self._policies.items()
