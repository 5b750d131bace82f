"""
Key-Value Store
Small TTL-aware key-value abstraction used for signature-token consumption
tracking, rate-limit counters and the key-value contract backend.

Values are JSON-compatible. Operations that must not race (pop, incr,
compare_and_swap, set_if_absent) are atomic in every implementation.
"""
import asyncio
import copy
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueStoreError(Exception):
    """Base exception for key-value store operations."""
    pass


class KeyValueStore(ABC):
    """Abstract base class for key-value store implementations."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
        """Store only when the key is absent. Returns True if stored."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete. Only one concurrent caller gets the value."""
        pass

    @abstractmethod
    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds; None when absent or without expiry."""
        pass

    @abstractmethod
    async def incr(self, key: str, window_seconds: float) -> Tuple[int, datetime]:
        """Increment a counter. The expiry is set when the counter is created.

        Returns (count, expires_at).
        """
        pass

    @abstractmethod
    async def compare_and_swap(self, key: str, field: str, expected: Any, value: Any) -> bool:
        """Replace the dict stored at key only if value[field] == expected."""
        pass

    @abstractmethod
    async def scan(self, prefix: str) -> Dict[str, Any]:
        """All live entries whose key starts with prefix."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Suitable for tests and single-process deployments."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._entries: Dict[str, Tuple[Any, Optional[datetime]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[datetime]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        async with self._lock:
            self._entries[key] = (copy.deepcopy(value), self._expiry(ttl_seconds))

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (copy.deepcopy(value), self._expiry(ttl_seconds))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def pop(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._entries[key]
            return entry[0]

    async def ttl(self, key: str) -> Optional[float]:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return (entry[1] - self._clock()).total_seconds()

    async def incr(self, key: str, window_seconds: float) -> Tuple[int, datetime]:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                expires_at = self._clock() + timedelta(seconds=window_seconds)
                self._entries[key] = (1, expires_at)
                return 1, expires_at
            count, expires_at = entry
            self._entries[key] = (count + 1, expires_at)
            return count + 1, expires_at

    async def compare_and_swap(self, key: str, field: str, expected: Any, value: Any) -> bool:
        async with self._lock:
            entry = self._live(key)
            if entry is None or not isinstance(entry[0], dict):
                return False
            if entry[0].get(field) != expected:
                return False
            self._entries[key] = (copy.deepcopy(value), entry[1])
            return True

    async def scan(self, prefix: str) -> Dict[str, Any]:
        result = {}
        for key in list(self._entries.keys()):
            if key.startswith(prefix):
                entry = self._live(key)
                if entry is not None:
                    result[key] = copy.deepcopy(entry[0])
        return result


class MongoKeyValueStore(KeyValueStore):
    """
    MongoDB-backed store.
    Entries live in one collection as {key, value, expires_at}. A TTL index on
    expires_at purges old entries; reads also filter on expiry because the TTL
    monitor only runs periodically.
    """

    def __init__(self, db, collection_name: str = "kv_entries", clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.collection_name = collection_name
        self._clock = clock

    @property
    def _collection(self):
        return self.db[self.collection_name]

    def _live_filter(self, key: str) -> Dict[str, Any]:
        return {
            "key": key,
            "$or": [{"expires_at": None}, {"expires_at": {"$gt": self._clock()}}],
        }

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    async def _purge_expired(self, key: str) -> None:
        await self._collection.delete_one({"key": key, "expires_at": {"$ne": None, "$lte": self._clock()}})

    async def get(self, key: str) -> Optional[Any]:
        doc = await self._collection.find_one(self._live_filter(key), {"_id": 0, "value": 1})
        return doc["value"] if doc else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        await self._collection.update_one(
            {"key": key},
            {"$set": {"value": value, "expires_at": self._expiry(ttl_seconds)}},
            upsert=True,
        )

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
        await self._purge_expired(key)
        try:
            await self._collection.insert_one(
                {"key": key, "value": value, "expires_at": self._expiry(ttl_seconds)}
            )
            return True
        except DuplicateKeyError:
            return False

    async def delete(self, key: str) -> bool:
        result = await self._collection.delete_one({"key": key})
        return result.deleted_count > 0

    async def pop(self, key: str) -> Optional[Any]:
        doc = await self._collection.find_one_and_delete(self._live_filter(key))
        return doc["value"] if doc else None

    async def ttl(self, key: str) -> Optional[float]:
        doc = await self._collection.find_one(self._live_filter(key), {"_id": 0, "expires_at": 1})
        if not doc or doc.get("expires_at") is None:
            return None
        expires_at = doc["expires_at"]
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - self._clock()).total_seconds()

    async def incr(self, key: str, window_seconds: float) -> Tuple[int, datetime]:
        await self._purge_expired(key)
        update = {
            "$inc": {"value": 1},
            "$setOnInsert": {"expires_at": self._clock() + timedelta(seconds=window_seconds)},
        }
        try:
            doc = await self._collection.find_one_and_update(
                {"key": key}, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost an upsert race; the document exists now
            doc = await self._collection.find_one_and_update(
                {"key": key}, {"$inc": {"value": 1}}, return_document=ReturnDocument.AFTER
            )
        if doc is None:
            raise KeyValueStoreError(f"Counter {key} vanished during increment")
        expires_at = doc["expires_at"]
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return int(doc["value"]), expires_at

    async def compare_and_swap(self, key: str, field: str, expected: Any, value: Any) -> bool:
        query = self._live_filter(key)
        query[f"value.{field}"] = expected
        result = await self._collection.update_one(query, {"$set": {"value": value}})
        return result.modified_count == 1

    async def scan(self, prefix: str) -> Dict[str, Any]:
        query = {
            "key": {"$regex": f"^{re.escape(prefix)}"},
            "$or": [{"expires_at": None}, {"expires_at": {"$gt": self._clock()}}],
        }
        cursor = self._collection.find(query, {"_id": 0, "key": 1, "value": 1})
        return {doc["key"]: doc["value"] async for doc in cursor}
