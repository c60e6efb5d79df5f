"""Key/value cache with TTL and glob invalidation.

``InMemoryCache`` is the process-local default. Any object with the same
async ``get`` / ``set`` / ``delete`` / ``invalidate_pattern`` methods (e.g. a
Redis-backed adapter in the embedding app) can be passed to the service
instead. ``ResilientCache`` wraps a backend so that a cache outage degrades to
a miss instead of failing the caller.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class Cache(Protocol):
    """Async key/value cache interface consumed by the generation service."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def invalidate_pattern(self, pattern: str) -> int: ...


class InMemoryCache:
    """Dict-backed cache; expired entries are evicted lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize an empty cache.

        Args:
            clock: Monotonic time source used for expiry
        """
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and now >= expires_at

    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value.

        Args:
            key: Cache key

        Returns:
            The stored value, or None when missing or expired
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at, self._clock()):
                del self._entries[key]
                logger.debug("Cache expired: %s", key)
                return None
            return value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: Lifetime in seconds; None or 0 keeps it until deleted
        """
        async with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        async with self._lock:
            self._entries.pop(key, None)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern.

        Args:
            pattern: fnmatch-style pattern, e.g. ``quiz:abc:*``

        Returns:
            Number of keys removed
        """
        async with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Cache invalidated %d keys for pattern %s", len(doomed), pattern)
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


class ResilientCache:
    """Wrap a cache backend; failures are logged and treated as misses."""

    def __init__(self, backend: Cache):
        """Wrap a cache backend.

        Args:
            backend: Any object implementing the ``Cache`` methods
        """
        self.backend = backend

    async def get(self, key: str) -> Optional[Any]:
        """Get a value from the backend.

        Args:
            key: Cache key

        Returns:
            The cached value, or None on a miss or backend failure
        """
        try:
            return await self.backend.get(key)
        except Exception as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        try:
            await self.backend.set(key, value, ttl)
        except Exception as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate matching keys on the backend.

        Returns:
            Number of keys removed, or 0 when the backend failed
        """
        try:
            return await self.backend.invalidate_pattern(pattern)
        except Exception as exc:
            logger.warning("Cache invalidation failed for %s: %s", pattern, exc)
            return 0
