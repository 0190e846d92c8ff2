"""In-process cache store used when no Redis instance is configured."""
import json
import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from gitdash.domain.cache_interface import DEFAULT_TTL, ICacheStore
from gitdash.infrastructure.serialization import dumps


logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryCacheStore(ICacheStore):
    """Dictionary-backed cache with absolute expiry.

    Payloads are stored JSON-encoded so cache hits decode exactly like the
    Redis store does.
    """

    def __init__(
        self,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str, decode: Callable[[Any], T]) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss for key: {key}")
            return None

        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry expired for key: {key}")
            return None

        try:
            return decode(json.loads(payload))
        except Exception as e:
            logger.error(f"Discarding undecodable cache entry for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        ttl = ttl or self._default_ttl
        try:
            payload = dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Error writing to cache for key {key}: {e}")
            return
        self._entries[key] = (payload, self._clock() + ttl.total_seconds())

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        self._entries.clear()
