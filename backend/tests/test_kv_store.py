"""
Key-value store semantics: expiry, atomic pop, counters and compare-and-swap.
The Mongo store is exercised against mocked Motor collections.
"""
import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from econtract.cache.kv_store import InMemoryKeyValueStore, MongoKeyValueStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_entries_expire(self, store, clock):
        await store.set("sign:abc", {"contract_id": "CT-1"}, ttl_seconds=60)
        assert await store.get("sign:abc") == {"contract_id": "CT-1"}
        assert await store.ttl("sign:abc") == 60

        clock.now += timedelta(seconds=60)
        assert await store.get("sign:abc") is None
        assert await store.ttl("sign:abc") is None

    @pytest.mark.asyncio
    async def test_values_are_copied(self, store):
        value = {"party_id": "p1"}
        await store.set("k", value)
        value["party_id"] = "changed"
        assert (await store.get("k"))["party_id"] == "p1"

    @pytest.mark.asyncio
    async def test_pop_hands_value_to_one_caller(self, store):
        await store.set("sign:token", {"party_id": "p1"})
        results = await asyncio.gather(*(store.pop("sign:token") for _ in range(5)))
        assert [r for r in results if r is not None] == [{"party_id": "p1"}]
        assert await store.get("sign:token") is None

    @pytest.mark.asyncio
    async def test_set_if_absent(self, store, clock):
        assert await store.set_if_absent("k", 1, ttl_seconds=10) is True
        assert await store.set_if_absent("k", 2) is False
        clock.now += timedelta(seconds=11)
        assert await store.set_if_absent("k", 3) is True
        assert await store.get("k") == 3

    @pytest.mark.asyncio
    async def test_incr_keeps_window_expiry(self, store, clock):
        count, expires_at = await store.incr("rate:x", 60)
        assert count == 1
        clock.now += timedelta(seconds=30)
        count, second_expiry = await store.incr("rate:x", 60)
        assert count == 2
        assert second_expiry == expires_at

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store):
        await store.set("contract:CT-1", {"version": 1, "title": "a"})
        assert await store.compare_and_swap("contract:CT-1", "version", 2, {"version": 3}) is False
        assert await store.compare_and_swap("contract:CT-1", "version", 1, {"version": 2, "title": "b"}) is True
        assert await store.get("contract:CT-1") == {"version": 2, "title": "b"}

    @pytest.mark.asyncio
    async def test_scan_by_prefix(self, store, clock):
        await store.set("contract:1", {"n": 1})
        await store.set("contract:2", {"n": 2}, ttl_seconds=5)
        await store.set("rate:1", 1)
        clock.now += timedelta(seconds=6)
        assert await store.scan("contract:") == {"contract:1": {"n": 1}}

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.set("k", 1)
        assert await store.delete("k") is True
        assert await store.delete("k") is False


def _mongo_store(clock):
    collection = MagicMock()
    db = MagicMock()
    db.__getitem__.return_value = collection
    return MongoKeyValueStore(db, clock=clock), collection


class TestMongoStore:
    @pytest.mark.asyncio
    async def test_pop_uses_find_one_and_delete(self, clock):
        store, collection = _mongo_store(clock)
        collection.find_one_and_delete = AsyncMock(return_value={"key": "sign:t", "value": {"party_id": "p1"}})

        assert await store.pop("sign:t") == {"party_id": "p1"}
        query = collection.find_one_and_delete.call_args[0][0]
        assert query["key"] == "sign:t"
        assert {"expires_at": {"$gt": clock.now}} in query["$or"]

    @pytest.mark.asyncio
    async def test_set_if_absent_duplicate(self, clock):
        store, collection = _mongo_store(clock)
        collection.delete_one = AsyncMock()
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))
        assert await store.set_if_absent("k", 1) is False

    @pytest.mark.asyncio
    async def test_ttl_handles_naive_datetimes(self, clock):
        store, collection = _mongo_store(clock)
        naive = (clock.now + timedelta(seconds=90)).replace(tzinfo=None)
        collection.find_one = AsyncMock(return_value={"expires_at": naive})
        assert await store.ttl("k") == 90

    @pytest.mark.asyncio
    async def test_incr_retries_after_upsert_race(self, clock):
        store, collection = _mongo_store(clock)
        expires_at = clock.now + timedelta(seconds=60)
        collection.delete_one = AsyncMock()
        collection.find_one_and_update = AsyncMock(
            side_effect=[DuplicateKeyError("dup"), {"value": 2, "expires_at": expires_at}]
        )
        assert await store.incr("rate:x", 60) == (2, expires_at)
        assert collection.find_one_and_update.await_count == 2

    @pytest.mark.asyncio
    async def test_compare_and_swap_matches_field(self, clock):
        store, collection = _mongo_store(clock)
        collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
        assert await store.compare_and_swap("contract:1", "version", 4, {"version": 5}) is True
        query = collection.update_one.call_args[0][0]
        assert query["value.version"] == 4
