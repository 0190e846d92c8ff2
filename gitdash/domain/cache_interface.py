"""Cache interface (port) for aggregated statistics.

This is the port in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Optional, TypeVar


T = TypeVar("T")

DEFAULT_TTL = timedelta(minutes=30)


class ICacheStore(ABC):
    """Abstract interface for a key-value cache with per-entry TTL.

    Implementations are fail-open: store failures are logged and turned into
    a miss or a no-op, never raised to the caller.
    """

    @abstractmethod
    async def get(self, key: str, decode: Callable[[Any], T]) -> Optional[T]:
        """Return the decoded value for `key`, or None on miss or decode failure.

        Args:
            key: Cache key
            decode: Builds the result from the JSON-decoded payload
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        """Store `value` under `key` for `ttl` (default 30 minutes)."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
