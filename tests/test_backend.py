"""Tests for the cache backends and their failure mapping."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from backend import (
    CacheUnavailable,
    InMemoryCacheBackend,
    RedisCacheBackend,
    create_cache_backend,
)


class TestInMemoryCacheBackend:
    @pytest.mark.asyncio
    async def test_add_to_set_only_first_call_is_new(self, cache):
        results = [await cache.add_to_set("s", "m") for _ in range(5)]
        assert results == [True, False, False, False, False]

    @pytest.mark.asyncio
    async def test_add_to_set_after_delete_is_new_again(self, cache):
        await cache.add_to_set("s", "m")
        await cache.delete_key("s")
        assert await cache.add_to_set("s", "m") is True

    @pytest.mark.asyncio
    async def test_concurrent_add_same_member_has_one_winner(self, cache):
        results = await asyncio.gather(*(cache.add_to_set("s", "m") for _ in range(50)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_set_expires_after_ttl(self, clocked_cache, fake_clock):
        cache = clocked_cache
        assert await cache.add_to_set("s", "m", ttl_seconds=60) is True
        fake_clock.advance(59)
        assert await cache.add_to_set("s", "m", ttl_seconds=60) is False
        fake_clock.advance(1)
        assert await cache.add_to_set("s", "m", ttl_seconds=60) is True

    @pytest.mark.asyncio
    async def test_window_starts_with_first_member(self, clocked_cache, fake_clock):
        cache = clocked_cache
        await cache.add_to_set("s", "a", ttl_seconds=60)
        fake_clock.advance(30)
        # A later member does not extend the window
        await cache.add_to_set("s", "b", ttl_seconds=60)
        fake_clock.advance(30)
        assert await cache.is_member("s", "b") is False

    @pytest.mark.asyncio
    async def test_increment_starts_at_one(self, cache):
        assert await cache.increment("c") == 1
        assert await cache.increment("c") == 2
        assert await cache.get("c") == "2"

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, cache):
        await asyncio.gather(*(cache.increment("c") for _ in range(100)))
        assert await cache.get("c") == "100"

    @pytest.mark.asyncio
    async def test_hash_fields(self, cache):
        await cache.set_field("h", "a", "1")
        await cache.set_field("h", "b", "2")
        await cache.set_field("h", "a", "3")
        assert await cache.get_field("h", "a") == "3"
        assert await cache.get_all_fields("h") == {"a": "3", "b": "2"}

        await cache.delete_field("h", "a")
        assert await cache.get_field("h", "a") is None
        await cache.delete_field("h", "missing")
        assert await cache.get_all_fields("h") == {"b": "2"}

    @pytest.mark.asyncio
    async def test_absent_values(self, cache):
        assert await cache.get("nope") is None
        assert await cache.get_field("nope", "f") is None
        assert await cache.get_all_fields("nope") == {}
        assert await cache.is_member("nope", "m") is False
        await cache.delete_key("nope")

    @pytest.mark.asyncio
    async def test_scalar_set_with_ttl(self, clocked_cache, fake_clock):
        cache = clocked_cache
        await cache.set("k", 5, ttl_seconds=10)
        assert await cache.get("k") == "5"
        fake_clock.advance(10)
        assert await cache.get("k") is None


def _redis_backend(client, op_timeout=1.0):
    return RedisCacheBackend(redis_url="redis://localhost:6379/0", op_timeout=op_timeout, redis_client=client)


def _pipeline(results):
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.execute = AsyncMock(return_value=results)
    return pipe


    @pytest.mark.asyncio
    async def test_wrong_type_access_is_unavailable(self, cache):
        await cache.set_field("h", "f", "v")
        await cache.add_to_set("s", "m")

        with pytest.raises(CacheUnavailable):
            await cache.get("h")
        with pytest.raises(CacheUnavailable):
            await cache.increment("s")
        with pytest.raises(CacheUnavailable):
            await cache.add_to_set("h", "m")
        with pytest.raises(CacheUnavailable):
            await cache.get_field("s", "f")

    @pytest.mark.asyncio
    async def test_increment_non_integer_is_unavailable(self, cache):
        await cache.set("c", "abc")
        with pytest.raises(CacheUnavailable):
            await cache.increment("c")

    @pytest.mark.asyncio
    async def test_close_keeps_data(self, cache):
        await cache.set("k", "v")
        await cache.close()
        assert await cache.get("k") == "v"


class TestRedisCacheBackend:
    @pytest.mark.asyncio
    async def test_add_to_set_uses_sadd_and_expire_nx(self):
        client = AsyncMock()
        pipe = _pipeline([1, True])
        client.pipeline = MagicMock(return_value=pipe)
        backend = _redis_backend(client)

        assert await backend.add_to_set("k", "v", ttl_seconds=60) is True
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.sadd.assert_called_once_with("k", "v")
        pipe.expire.assert_called_once_with("k", 60, nx=True)

    @pytest.mark.asyncio
    async def test_add_to_set_existing_member(self):
        client = AsyncMock()
        pipe = _pipeline([0])
        client.pipeline = MagicMock(return_value=pipe)
        backend = _redis_backend(client)

        assert await backend.add_to_set("k", "v") is False
        pipe.expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_to_set_error_is_unavailable_not_duplicate(self):
        client = AsyncMock()
        pipe = _pipeline(None)
        pipe.execute.side_effect = RedisConnectionError("Connection refused")
        client.pipeline = MagicMock(return_value=pipe)
        backend = _redis_backend(client)

        with pytest.raises(CacheUnavailable):
            await backend.add_to_set("k", "v", ttl_seconds=60)

    @pytest.mark.asyncio
    async def test_increment_returns_int(self):
        client = AsyncMock()
        client.incr.return_value = 3
        backend = _redis_backend(client)

        assert await backend.increment("c") == 3
        client.incr.assert_awaited_once_with("c")

    @pytest.mark.asyncio
    async def test_increment_error_raises(self):
        client = AsyncMock()
        client.incr.side_effect = RedisTimeoutError("Timeout reading from socket")
        backend = _redis_backend(client)

        with pytest.raises(CacheUnavailable):
            await backend.increment("c")

    @pytest.mark.asyncio
    async def test_slow_call_times_out_as_unavailable(self):
        client = AsyncMock()

        async def slow_get(key):
            await asyncio.sleep(1)

        client.get = slow_get
        backend = _redis_backend(client, op_timeout=0.01)

        with pytest.raises(CacheUnavailable):
            await backend.get("k")

    @pytest.mark.asyncio
    async def test_os_error_is_unavailable(self):
        client = AsyncMock()
        client.hget.side_effect = OSError("Network unreachable")
        backend = _redis_backend(client)

        with pytest.raises(CacheUnavailable):
            await backend.get_field("h", "f")

    @pytest.mark.asyncio
    async def test_hash_operations_map_to_redis_commands(self):
        client = AsyncMock()
        client.hget.return_value = '{"a": 1}'
        client.hgetall.return_value = {}
        backend = _redis_backend(client)

        await backend.set_field("h", "f", "v")
        assert await backend.get_field("h", "f") == '{"a": 1}'
        assert await backend.get_all_fields("h") == {}
        await backend.delete_field("h", "f")
        await backend.delete_key("h")

        client.hset.assert_awaited_once_with("h", "f", "v")
        client.hdel.assert_awaited_once_with("h", "f")
        client.delete.assert_awaited_once_with("h")

    @pytest.mark.asyncio
    async def test_is_member(self):
        client = AsyncMock()
        client.sismember.return_value = 1
        backend = _redis_backend(client)

        assert await backend.is_member("s", "m") is True

    @pytest.mark.asyncio
    async def test_connect_pings(self):
        client = AsyncMock()
        client.ping.return_value = True
        backend = _redis_backend(client)

        await backend.connect()
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_uses_aclose(self):
        client = AsyncMock()
        backend = _redis_backend(client)

        await backend.close()
        client.aclose.assert_awaited_once()


class TestCreateCacheBackend:
    def test_memory(self):
        assert isinstance(create_cache_backend("memory"), InMemoryCacheBackend)

    def test_redis(self):
        # from_url does not connect until the first command
        assert isinstance(create_cache_backend("redis"), RedisCacheBackend)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_cache_backend("memcached")
