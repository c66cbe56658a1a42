"""
Tests for the rate-limit stores.

The same behavioural checks run against the Redis store (backed by
fakeredis) and the in-memory store.
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from api_guard.core.exceptions import RateLimitStoreError
from api_guard.stores.rate_limit_store import (
    InMemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
)


@pytest.fixture(params=["redis", "memory"])
def store(request, fake_redis) -> RateLimitStore:
    if request.param == "redis":
        return RedisRateLimitStore(redis_client=fake_redis)
    return InMemoryRateLimitStore()


class TestStoreBehaviour:

    @pytest.mark.asyncio
    async def test_count_is_inclusive_range(self, store):
        await store.add("k", "100:a", 100)
        await store.add("k", "200:b", 200)
        await store.add("k", "300:c", 300)

        assert await store.count("k", 100, 300) == 3
        assert await store.count("k", 150, 250) == 1
        assert await store.count("k", 301, 400) == 0

    @pytest.mark.asyncio
    async def test_count_of_unknown_key_is_zero(self, store):
        assert await store.count("missing", 0, 10_000) == 0

    @pytest.mark.asyncio
    async def test_same_score_distinct_members_both_count(self, store):
        await store.add("k", "100:a", 100)
        await store.add("k", "100:b", 100)

        assert await store.count("k", 0, 100) == 2

    @pytest.mark.asyncio
    async def test_trim_removes_scores_below_bound(self, store):
        await store.add("k", "100:a", 100)
        await store.add("k", "200:b", 200)

        await store.trim("k", 200)

        assert await store.count("k", 0, 1_000) == 1
        assert await store.count("k", 200, 200) == 1

    @pytest.mark.asyncio
    async def test_remove_member(self, store):
        await store.add("k", "100:a", 100)
        await store.remove("k", "100:a")

        assert await store.count("k", 0, 1_000) == 0

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestRedisStore:

    @pytest.mark.asyncio
    async def test_expire_sets_ttl(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)
        await store.add("rate-limit:1.2.3.4", "1:a", 1)
        await store.expire("rate-limit:1.2.3.4", 900)

        ttl = await fake_redis.ttl("rate-limit:1.2.3.4")
        assert 0 < ttl <= 900

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        client = AsyncMock()
        client.zcount.side_effect = RedisConnectionError("refused")
        store = RedisRateLimitStore(redis_client=client)

        with pytest.raises(RateLimitStoreError) as exc_info:
            await store.count("rate-limit:1.2.3.4", 0, 1)

        assert exc_info.value.key == "rate-limit:1.2.3.4"

    @pytest.mark.asyncio
    async def test_ping_reports_unreachable(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")

        assert await RedisRateLimitStore(redis_client=client).ping() is False


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_expired_key_is_dropped(self):
        store = InMemoryRateLimitStore()
        await store.add("k", "1:a", 1)
        await store.expire("k", 0)

        assert await store.count("k", 0, 10) == 0
        assert store.ttl("k") is None

    @pytest.mark.asyncio
    async def test_ttl_reports_remaining_seconds(self):
        store = InMemoryRateLimitStore()
        await store.add("k", "1:a", 1)
        await store.expire("k", 900)

        assert 0 < store.ttl("k") <= 900

    @pytest.mark.asyncio
    async def test_count_does_not_create_keys(self):
        store = InMemoryRateLimitStore()

        assert await store.count("rate-limit:198.51.100.1", 0, 10) == 0
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_expired_keys_are_swept_on_write(self):
        store = InMemoryRateLimitStore()
        await store.add("rate-limit:198.51.100.1", "1:a", 1)
        await store.expire("rate-limit:198.51.100.1", 0)

        await store.add("rate-limit:198.51.100.2", "2:b", 2)

        assert store.keys() == ["rate-limit:198.51.100.2"]

    @pytest.mark.asyncio
    async def test_key_is_dropped_when_emptied(self):
        store = InMemoryRateLimitStore()
        await store.add("k", "1:a", 1)
        await store.expire("k", 900)

        await store.remove("k", "1:a")

        assert store.keys() == []
        assert store.ttl("k") is None

    @pytest.mark.asyncio
    async def test_trim_of_whole_set_drops_key(self):
        store = InMemoryRateLimitStore()
        await store.add("k", "1:a", 1)

        await store.trim("k", 100)

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_expire_of_missing_key_is_noop(self):
        store = InMemoryRateLimitStore()

        await store.expire("missing", 900)

        assert store.ttl("missing") is None
        assert store.keys() == []
