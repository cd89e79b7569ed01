"""Cache backends: abstract interface, Redis and in-process memory."""
import fnmatch
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

# fnmatch has no escape character; a one-character class matches literally.
_FNMATCH_SPECIAL = re.compile(r"([*?\[])")
_REDIS_SPECIAL = re.compile(r"([*?\[\]\\])")


class Cache(ABC):
    """Key/value cache holding serialized strings with a TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number removed."""

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]:
        """Return keys matching a glob pattern."""

    def escape_pattern(self, text: str) -> str:
        """Quote glob metacharacters so ``text`` matches only itself in ``keys``."""
        return _FNMATCH_SPECIAL.sub(r"[\1]", text)

    async def close(self) -> None:
        """Release connections."""


class RedisCache(Cache):
    """Cache backed by redis.asyncio."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def keys(self, pattern: str) -> List[str]:
        return [key async for key in self.client.scan_iter(match=pattern)]

    def escape_pattern(self, text: str) -> str:
        return _REDIS_SPECIAL.sub(r"\\\1", text)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCache(Cache):
    """
    In-process cache for tests and single-process deployments.

    Expiry is checked lazily on access.
    """

    def __init__(self, clock=time.monotonic):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    async def keys(self, pattern: str) -> List[str]:
        return [key for key in list(self._entries) if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)]
