"""Factory pattern for creating counter store instances."""

from app.adapters.counter_store.base import AbstractCounterStore
from app.adapters.counter_store.in_memory import InMemoryCounterStore
from app.adapters.counter_store.postgrest import PostgrestCounterStore
from app.core.config import ThrottleSettings
from app.core.errors import ValidationAppError


def create_counter_store(throttle_settings: ThrottleSettings) -> AbstractCounterStore:
    """Instantiate the counter store selected by THROTTLE_STORE_BACKEND.

    Args:
        throttle_settings: Resolved throttle settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ValidationAppError: If backend-specific requirements are not met.
    """
    backend = throttle_settings.store_backend.lower()

    if backend == "memory":
        return InMemoryCounterStore()

    if backend == "postgrest":
        if not throttle_settings.store_url:
            raise ValidationAppError(
                code="counter_store_missing_url",
                message="PostgREST counter store requires THROTTLE_STORE_URL",
            )
        if not throttle_settings.store_api_key:
            raise ValidationAppError(
                code="counter_store_missing_api_key",
                message="PostgREST counter store requires THROTTLE_STORE_API_KEY",
            )
        return PostgrestCounterStore(
            base_url=throttle_settings.store_url,
            api_key=throttle_settings.store_api_key,
            table=throttle_settings.store_table,
            timeout_seconds=throttle_settings.store_timeout_seconds,
        )

    raise ValidationAppError(
        code="counter_store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported: memory, postgrest",
    )
