"""Tests for the Redis and in-memory cache stores."""
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import ManualClock
from gitdash.domain.errors import CacheError
from gitdash.domain.models import CodeChangeTotals, RepositorySummary
from gitdash.infrastructure.memory_cache import InMemoryCacheStore
from gitdash.infrastructure.redis_cache import RedisCacheStore


WRONG_REPOSITORY = {
    "id": 1,
    "name": "demo",
    "full_name": "octo/demo",
    "html_url": "https://github.com/octo/demo",
    "created_at": 5,
}


class TestRedisCacheStore:
    """Test cases for RedisCacheStore."""

    @pytest.fixture
    def client(self):
        """Mock asyncio Redis client."""
        return AsyncMock()

    @pytest.fixture
    def store(self, client):
        return RedisCacheStore(client=client, default_ttl=timedelta(minutes=30))

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisCacheStore()

    @pytest.mark.asyncio
    async def test_get_hit_decodes_payload(self, store, client):
        """Test getting a value from cache (hit)."""
        client.get.return_value = json.dumps({"additions": 3, "deletions": 4})

        result = await store.get("gitdash:k", CodeChangeTotals.from_dict)

        assert result == CodeChangeTotals(additions=3, deletions=4)
        client.get.assert_called_once_with("gitdash:k")

    @pytest.mark.asyncio
    async def test_get_miss(self, store, client):
        client.get.return_value = None

        assert await store.get("gitdash:k", CodeChangeTotals.from_dict) is None

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, store, client):
        """Test a store failure reads as absent instead of raising."""
        client.get.side_effect = ConnectionError("connection refused")

        assert await store.get("gitdash:k", CodeChangeTotals.from_dict) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["{not json", json.dumps({"additions": 1})])
    async def test_get_undecodable_entry_is_a_miss(self, store, client, payload):
        client.get.return_value = payload

        assert await store.get("gitdash:k", CodeChangeTotals.from_dict) is None

    @pytest.mark.asyncio
    async def test_get_structurally_wrong_entry_is_a_miss(self, store, client):
        """Test a decoder failure of any kind reads as absent."""
        client.get.return_value = json.dumps(WRONG_REPOSITORY)

        assert await store.get("gitdash:k", RepositorySummary.from_dict) is None

    @pytest.mark.asyncio
    async def test_set_uses_ttl_seconds(self, store, client):
        await store.set("gitdash:k", CodeChangeTotals(additions=1, deletions=2),
                        ttl=timedelta(minutes=10))

        client.set.assert_called_once_with(
            "gitdash:k", '{"additions":1,"deletions":2}', ex=600
        )

    @pytest.mark.asyncio
    async def test_set_defaults_ttl(self, store, client):
        await store.set("gitdash:k", [1, 2, 3])

        client.set.assert_called_once_with("gitdash:k", "[1,2,3]", ex=1800)

    @pytest.mark.asyncio
    async def test_set_error_is_swallowed(self, store, client):
        client.set.side_effect = ConnectionError("connection refused")

        await store.set("gitdash:k", [1])

    @pytest.mark.asyncio
    async def test_remove_error_is_swallowed(self, store, client):
        client.delete.side_effect = ConnectionError("connection refused")

        await store.remove("gitdash:k")

        client.delete.assert_called_once_with("gitdash:k")

    @pytest.mark.asyncio
    async def test_start_raises_when_unreachable(self, store, client):
        client.ping.side_effect = ConnectionError("connection refused")

        with pytest.raises(CacheError):
            await store.start()

    @pytest.mark.asyncio
    async def test_health_check(self, store, client):
        assert await store.health_check() is True

        client.ping.side_effect = ConnectionError("connection refused")

        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_close(self, store, client):
        await store.close()

        client.aclose.assert_awaited_once()


class TestInMemoryCacheStore:
    """Test cases for InMemoryCacheStore."""

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def store(self, clock):
        return InMemoryCacheStore(default_ttl=timedelta(minutes=30), clock=clock)

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, store, clock):
        await store.set("k", [1, 2], ttl=timedelta(minutes=10))

        clock.advance(timedelta(minutes=9, seconds=59))
        assert await store.get("k", list) == [1, 2]

        clock.advance(timedelta(seconds=1))
        assert await store.get("k", list) is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_default_ttl(self, store, clock):
        await store.set("k", {"a": 1})

        clock.advance(timedelta(minutes=29))
        assert await store.get("k", dict) == {"a": 1}

        clock.advance(timedelta(minutes=1))
        assert await store.get("k", dict) is None

    @pytest.mark.asyncio
    async def test_remove_and_close(self, store):
        await store.set("a", 1)
        await store.set("b", 2)

        await store.remove("a")
        await store.remove("missing")

        assert await store.get("a", int) is None
        assert len(store) == 1

        await store.close()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_structurally_wrong_entry_is_a_miss(self, store):
        await store.set("k", WRONG_REPOSITORY)

        assert await store.get("k", RepositorySummary.from_dict) is None
