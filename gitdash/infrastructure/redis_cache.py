"""Redis cache store implementation with fail-open semantics."""
import json
import logging
from datetime import timedelta
from typing import Any, Callable, Optional, TypeVar

import redis.asyncio as redis
from gitdash.domain.cache_interface import DEFAULT_TTL, ICacheStore
from gitdash.domain.errors import CacheError
from gitdash.infrastructure.serialization import dumps


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisCacheStore(ICacheStore):
    """Redis implementation of the statistics cache.

    Every store failure is logged and swallowed: a cache outage degrades to
    cache misses, it never fails a statistics request.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        default_ttl: timedelta = DEFAULT_TTL,
        client: Optional[redis.Redis] = None,
        socket_timeout: float = 5.0,
    ):
        """Initialize the cache store.

        Args:
            redis_url: Redis connection URL, used when `client` is not given
            default_ttl: Expiry applied when `set` gets no TTL
            client: Pre-built asyncio Redis client
            socket_timeout: Connect and read timeout in seconds
        """
        if client is None:
            if not redis_url:
                raise ValueError("Either redis_url or client is required")
            client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=socket_timeout,
                socket_timeout=socket_timeout,
                health_check_interval=30,
            )
        self._redis = client
        self._default_ttl = default_ttl

    async def start(self) -> None:
        """Check connectivity.

        Raises:
            CacheError: If Redis cannot be reached
        """
        try:
            await self._redis.ping()
            logger.info("Connected to Redis cache")
        except Exception as e:
            raise CacheError(f"Redis unavailable: {e}") from e

    async def get(self, key: str, decode: Callable[[Any], T]) -> Optional[T]:
        try:
            cached = await self._redis.get(key)
        except Exception as e:
            logger.error(f"Error reading from cache for key {key}: {e}")
            return None

        if not cached:
            logger.debug(f"Cache miss for key: {key}")
            return None

        try:
            value = decode(json.loads(cached))
        except Exception as e:
            logger.error(f"Discarding undecodable cache entry for key {key}: {e}")
            return None

        logger.debug(f"Cache hit for key: {key}")
        return value

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        ttl = ttl or self._default_ttl
        try:
            payload = dumps(value)
            await self._redis.set(key, payload, ex=int(ttl.total_seconds()))
            logger.debug(f"Data cached for key: {key} with expiration: {ttl}")
        except Exception as e:
            logger.error(f"Error writing to cache for key {key}: {e}")

    async def remove(self, key: str) -> None:
        try:
            await self._redis.delete(key)
            logger.debug(f"Removed cache for key: {key}")
        except Exception as e:
            logger.error(f"Error removing cache for key {key}: {e}")

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._redis.ping()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close the Redis connection pool."""
        try:
            await self._redis.aclose()
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
