"""Key-value stores for token consumption tracking and rate limiting."""

from .kv_store import (
    KeyValueStore,
    KeyValueStoreError,
    InMemoryKeyValueStore,
    MongoKeyValueStore,
)

__all__ = [
    "KeyValueStore",
    "KeyValueStoreError",
    "InMemoryKeyValueStore",
    "MongoKeyValueStore",
]
