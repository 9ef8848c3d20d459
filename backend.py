import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import CACHE_BACKEND, CACHE_OP_TIMEOUT_SECONDS, REDIS_URL
from logging_config import get_logger

logger = get_logger(__name__)


class CacheUnavailable(Exception):
    """The shared cache could not be reached or did not answer in time.

    Callers must treat this as a transient failure. It never means
    "absent" or "already seen".
    """


class CacheBackend(ABC):
    """Async key-value contract shared by presence and engagement state.

    Each method is a single round trip and atomic on its own. Nothing here
    spans more than one key.
    """

    async def connect(self):
        await self.ping()

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def close(self): ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None): ...

    @abstractmethod
    async def set_field(self, key: str, field: str, value: Any): ...

    @abstractmethod
    async def get_field(self, key: str, field: str) -> Optional[str]: ...

    @abstractmethod
    async def get_all_fields(self, key: str) -> Dict[str, str]: ...

    @abstractmethod
    async def delete_field(self, key: str, field: str): ...

    @abstractmethod
    async def delete_key(self, key: str): ...

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically add one; a missing key counts from 0, so the first call returns 1."""

    @abstractmethod
    async def add_to_set(self, key: str, member: str, ttl_seconds: Optional[int] = None) -> bool:
        """Insert ``member`` if absent and return True only when it was new.

        ``ttl_seconds`` is applied only when this call creates the set.
        """

    @abstractmethod
    async def is_member(self, key: str, member: str) -> bool: ...


class RedisCacheBackend(CacheBackend):
    def __init__(self, redis_url: str = REDIS_URL, op_timeout: float = CACHE_OP_TIMEOUT_SECONDS, redis_client=None):
        self.redis_url = redis_url
        self.op_timeout = op_timeout
        self.redis_client = redis_client or redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=op_timeout,
            socket_connect_timeout=op_timeout,
        )
        # Never log credentials
        logger.info(f"Initializing RedisCacheBackend for {redis_url.split('@')[-1]}")

    async def _run(self, operation: str, key: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.op_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Redis {operation} failed for key {key}: {type(e).__name__}: {e}", exc_info=True)
            raise CacheUnavailable(f"Redis {operation} failed: {e}") from e

    async def connect(self):
        await self.ping()
        logger.info(f"Redis client connected successfully to {self.redis_url.split('@')[-1]}")

    async def ping(self) -> bool:
        return bool(await self._run("ping", "-", self.redis_client.ping()))

    async def close(self):
        try:
            await self.redis_client.aclose()
            logger.info("Redis client closed")
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis client: {e}")

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", key, self.redis_client.get(key))

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        await self._run("set", key, self.redis_client.set(key, str(value), ex=ttl_seconds or None))

    async def set_field(self, key: str, field: str, value: Any):
        await self._run("hset", key, self.redis_client.hset(key, field, str(value)))
        logger.debug(f"Set field {field} on {key}")

    async def get_field(self, key: str, field: str) -> Optional[str]:
        return await self._run("hget", key, self.redis_client.hget(key, field))

    async def get_all_fields(self, key: str) -> Dict[str, str]:
        fields = await self._run("hgetall", key, self.redis_client.hgetall(key))
        return fields or {}

    async def delete_field(self, key: str, field: str):
        removed = await self._run("hdel", key, self.redis_client.hdel(key, field))
        logger.debug(f"Deleted field {field} on {key}: removed={removed}")

    async def delete_key(self, key: str):
        deleted = await self._run("delete", key, self.redis_client.delete(key))
        logger.debug(f"Deleted key {key}: deleted={deleted}")

    async def increment(self, key: str) -> int:
        value = await self._run("incr", key, self.redis_client.incr(key))
        return int(value)

    async def _add_to_set(self, key: str, member: str, ttl_seconds: Optional[int]):
        # SADD and EXPIRE NX in one MULTI so the window starts with the first member
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.sadd(key, member)
            if ttl_seconds:
                pipe.expire(key, ttl_seconds, nx=True)
            results = await pipe.execute()
        return results[0]

    async def add_to_set(self, key: str, member: str, ttl_seconds: Optional[int] = None) -> bool:
        added = await self._run("sadd", key, self._add_to_set(key, member, ttl_seconds))
        return int(added) == 1

    async def is_member(self, key: str, member: str) -> bool:
        return bool(await self._run("sismember", key, self.redis_client.sismember(key, member)))


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend for development and tests.

    Not shared between processes, so it gives none of the cross-instance
    guarantees of Redis. Expiry is checked lazily on access.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Any] = {}
        self._expires_at: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str):
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return self._data.get(key)

    def _typed(self, key: str, expected: type):
        value = self._live(key)
        if value is not None and not isinstance(value, expected):
            raise CacheUnavailable(f"WRONGTYPE operation against key {key} holding {type(value).__name__}")
        return value

    def _drop(self, key: str):
        self._data.pop(key, None)
        self._expires_at.pop(key, None)

    def _expire_in(self, key: str, ttl_seconds: Optional[int]):
        if ttl_seconds:
            self._expires_at[key] = self._clock() + ttl_seconds
        else:
            self._expires_at.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self):
        # Data outlives the handle, as it does in Redis
        pass

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._typed(key, str)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        async with self._lock:
            self._data[key] = str(value)
            self._expire_in(key, ttl_seconds)

    async def set_field(self, key: str, field: str, value: Any):
        async with self._lock:
            fields = self._typed(key, dict)
            if fields is None:
                fields = self._data[key] = {}
            fields[field] = str(value)

    async def get_field(self, key: str, field: str) -> Optional[str]:
        async with self._lock:
            return (self._typed(key, dict) or {}).get(field)

    async def get_all_fields(self, key: str) -> Dict[str, str]:
        async with self._lock:
            return dict(self._typed(key, dict) or {})

    async def delete_field(self, key: str, field: str):
        async with self._lock:
            fields = self._typed(key, dict)
            if fields is None:
                return
            fields.pop(field, None)
            if not fields:
                self._drop(key)

    async def delete_key(self, key: str):
        async with self._lock:
            self._drop(key)

    async def increment(self, key: str) -> int:
        async with self._lock:
            current = self._typed(key, str) or "0"
            try:
                value = int(current) + 1
            except ValueError as e:
                raise CacheUnavailable(f"Value at {key} is not an integer") from e
            self._data[key] = str(value)
            return value

    async def add_to_set(self, key: str, member: str, ttl_seconds: Optional[int] = None) -> bool:
        async with self._lock:
            members = self._typed(key, set)
            if members is None:
                members = self._data[key] = set()
                self._expire_in(key, ttl_seconds)
            if member in members:
                return False
            members.add(member)
            return True

    async def is_member(self, key: str, member: str) -> bool:
        async with self._lock:
            return member in (self._typed(key, set) or set())


def create_cache_backend(kind: str = CACHE_BACKEND) -> CacheBackend:
    kind = kind.lower()
    if kind == "redis":
        return RedisCacheBackend()
    if kind == "memory":
        logger.warning("Using InMemoryCacheBackend (single process only, not for production)")
        return InMemoryCacheBackend()
    raise ValueError(f"Unknown cache backend: {kind}")
