"""Document stores for the facility configuration and count history."""

from count_kernel.store.base import CountStore, StoreSnapshot
from count_kernel.store.json_file import JsonFileCountStore
from count_kernel.store.memory import InMemoryCountStore
from count_kernel.store.seed import DEFAULT_BASELINE, DEFAULT_LOCATIONS, seed_facility
from count_kernel.store.sql import SqlCountStore

__all__ = [
    "CountStore",
    "StoreSnapshot",
    "InMemoryCountStore",
    "JsonFileCountStore",
    "SqlCountStore",
    "DEFAULT_BASELINE",
    "DEFAULT_LOCATIONS",
    "seed_facility",
]
