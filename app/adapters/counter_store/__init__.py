"""Counter store adapters.

The limiter depends only on AbstractCounterStore, so the in-memory store
used in development and tests can be swapped for the PostgREST-backed
table without touching the throttling logic.
"""

from app.adapters.counter_store.base import AbstractCounterStore, CounterRecord
from app.adapters.counter_store.factory import create_counter_store
from app.adapters.counter_store.in_memory import InMemoryCounterStore
from app.adapters.counter_store.postgrest import PostgrestCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterRecord",
    "InMemoryCounterStore",
    "PostgrestCounterStore",
    "create_counter_store",
]
