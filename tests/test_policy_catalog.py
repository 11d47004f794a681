"""Unit tests for throttling policies and the policy catalog."""

from datetime import timedelta

import pytest

from app.core.config import ThrottleSettings, settings
from app.core.errors import ValidationAppError
from app.core.throttle import get_policy_catalog
from app.services.policy_catalog import (
    DEFAULT_POLICIES,
    OperationClass,
    PolicyCatalog,
    ThrottlePolicy,
)


class TestThrottlePolicy:
    def test_block_defaults_to_twice_the_window(self) -> None:
        policy = ThrottlePolicy(max_requests=10, window_seconds=30)

        assert policy.block_seconds == 60
        assert policy.block == timedelta(seconds=60)
        assert policy.window == timedelta(seconds=30)

    def test_explicit_block_is_kept(self) -> None:
        policy = ThrottlePolicy(max_requests=10, window_seconds=30, block_seconds=45)

        assert policy.block == timedelta(seconds=45)

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"max_requests": 0, "window_seconds": 60}, "max_requests"),
            ({"max_requests": -5, "window_seconds": 60}, "max_requests"),
            ({"max_requests": 1, "window_seconds": 0}, "window_seconds"),
            ({"max_requests": 1, "window_seconds": 60, "block_seconds": 0}, "block_seconds"),
            ({"max_requests": True, "window_seconds": 60}, "max_requests"),
            ({"max_requests": 2.5, "window_seconds": 60}, "max_requests"),
            ({"max_requests": "10", "window_seconds": 60}, "max_requests"),
            ({"max_requests": 1, "window_seconds": float("nan")}, "window_seconds"),
            ({"max_requests": 1, "window_seconds": float("inf")}, "window_seconds"),
            ({"max_requests": 1, "window_seconds": True}, "window_seconds"),
            ({"max_requests": 1, "window_seconds": 60, "block_seconds": float("nan")}, "block_seconds"),
            ({"max_requests": 1, "window_seconds": 60, "block_seconds": "300"}, "block_seconds"),
        ],
    )
    def test_invalid_policy_rejected_at_construction(self, kwargs: dict, field: str) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            ThrottlePolicy(**kwargs)

        assert exc_info.value.code == "invalid_throttle_policy"
        assert exc_info.value.details["field"] == field

    def test_policy_is_immutable(self) -> None:
        policy = ThrottlePolicy(max_requests=1, window_seconds=1)

        with pytest.raises(AttributeError):
            policy.max_requests = 100  # type: ignore[misc]


class TestPolicyCatalog:
    def test_default_table(self) -> None:
        catalog = PolicyCatalog()

        assert catalog.get(OperationClass.EXPENSIVE_AI) == ThrottlePolicy(20, 60, 300)
        assert catalog.get(OperationClass.IMAGE_SCAN) == ThrottlePolicy(30, 60, 180)
        assert catalog.get(OperationClass.GENERIC_API) == ThrottlePolicy(100, 60, 120)
        assert catalog.get(OperationClass.INBOUND_WEBHOOK) == ThrottlePolicy(500, 60, 60)

    def test_lookup_by_string_value(self) -> None:
        catalog = PolicyCatalog()

        assert catalog.get("image-scan") is catalog.get(OperationClass.IMAGE_SCAN)

    def test_unknown_class_raises(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            PolicyCatalog().get("free-for-all")

        assert exc_info.value.code == "unknown_operation_class"

    def test_overrides_merge_with_defaults(self) -> None:
        strict = ThrottlePolicy(max_requests=3, window_seconds=60, block_seconds=120)
        catalog = PolicyCatalog({OperationClass.EXPENSIVE_AI: strict})

        assert catalog.get(OperationClass.EXPENSIVE_AI) is strict
        assert catalog.get(OperationClass.GENERIC_API) == DEFAULT_POLICIES[OperationClass.GENERIC_API]

    def test_two_catalogs_coexist(self) -> None:
        lenient = PolicyCatalog({OperationClass.EXPENSIVE_AI: ThrottlePolicy(1000, 60)})
        default = PolicyCatalog()

        assert lenient.get(OperationClass.EXPENSIVE_AI).max_requests == 1000
        assert default.get(OperationClass.EXPENSIVE_AI).max_requests == 20

    def test_rejects_non_policy_values(self) -> None:
        with pytest.raises(ValidationAppError):
            PolicyCatalog({OperationClass.EXPENSIVE_AI: {"max_requests": 5}})  # type: ignore[dict-item]

    def test_from_settings_applies_overrides(self) -> None:
        throttle_settings = ThrottleSettings(
            expensive_ai_max_requests=5,
            expensive_ai_window_seconds=10,
            expensive_ai_block_seconds=None,
        )

        catalog = PolicyCatalog.from_settings(throttle_settings)

        policy = catalog.get(OperationClass.EXPENSIVE_AI)
        assert policy.max_requests == 5
        assert policy.window_seconds == 10
        assert policy.block_seconds == 20
        assert catalog.get(OperationClass.IMAGE_SCAN).max_requests == 30

    def test_iterates_all_classes(self) -> None:
        assert set(PolicyCatalog()) == set(OperationClass)

    def test_defaults_match_settings_defaults(self) -> None:
        from_defaults = PolicyCatalog.from_settings(ThrottleSettings())

        assert dict(from_defaults.items()) == dict(DEFAULT_POLICIES)


class TestCatalogProvider:
    def test_catalog_is_cached_while_settings_are_unchanged(self) -> None:
        assert get_policy_catalog() is get_policy_catalog()

    def test_catalog_is_rebuilt_when_policy_settings_change(self, monkeypatch) -> None:
        before = get_policy_catalog()
        monkeypatch.setattr(settings.throttle, "expensive_ai_max_requests", 7)

        after = get_policy_catalog()

        assert after is not before
        assert after.get(OperationClass.EXPENSIVE_AI).max_requests == 7
        assert after.get(OperationClass.IMAGE_SCAN) == before.get(OperationClass.IMAGE_SCAN)
