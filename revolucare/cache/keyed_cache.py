"""Generic cache-aside helper shared by every cached entity type."""
from typing import Awaitable, Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from revolucare.cache.backends import Cache
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class KeyedCache(Generic[T]):
    """
    Read-through / delete-on-write cache for one pydantic model type.

    Keys are ``<namespace>:<suffix>``. Backend failures are logged and
    treated as a miss (reads) or a no-op (writes and invalidation); they are
    never raised to the caller.

    Every invalidation bumps ``generation``. A value loaded from the store
    is only kept if no invalidation ran while it was being loaded or written,
    so a reader that raced a committed write cannot cache the older row.
    """

    def __init__(self, backend: Cache, namespace: str, model: Type[T], ttl_seconds: int):
        self.backend = backend
        self.namespace = namespace
        self.model = model
        self.ttl_seconds = ttl_seconds
        self.generation = 0

    def key(self, *parts: str) -> str:
        return ":".join((self.namespace,) + tuple(str(p) for p in parts))

    async def get(self, *parts: str) -> Optional[T]:
        key = self.key(*parts)
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.warning("Cache read failed, falling through", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return self.model.model_validate_json(raw)
        except ValueError as e:
            logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            await self.invalidate(*parts)
            return None

    async def set(self, value: T, *parts: str) -> None:
        key = self.key(*parts)
        try:
            await self.backend.set(key, value.model_dump_json(), self.ttl_seconds)
        except Exception as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    async def invalidate(self, *parts: str) -> None:
        self.generation += 1
        key = self.key(*parts)
        try:
            await self.backend.delete(key)
        except Exception as e:
            logger.warning("Cache invalidation failed", key=key, error=str(e))

    async def invalidate_prefix(self, *parts: str) -> None:
        """Delete every key under ``<namespace>:<parts>:*``. Parts are matched literally."""
        self.generation += 1
        prefix = self.key(*parts)
        try:
            pattern = self.backend.escape_pattern(prefix) + ":*"
            keys = await self.backend.keys(pattern)
            if keys:
                await self.backend.delete(*keys)
        except Exception as e:
            logger.warning("Cache prefix invalidation failed", prefix=prefix, error=str(e))

    async def set_unless_invalidated(self, value: T, generation: int, *parts: str) -> bool:
        """
        Cache a value read while ``generation`` was current.

        Skips the write if an invalidation has run since, and undoes it if one
        lands while the write is in flight. Returns True if the value stayed.
        """
        key = self.key(*parts)
        if self.generation != generation:
            logger.debug("Invalidated while loading, not caching", key=key)
            return False
        await self.set(value, *parts)
        if self.generation == generation:
            return True
        # The invalidation may have run before the write reached the backend.
        try:
            await self.backend.delete(key)
        except Exception as e:
            logger.warning("Cache invalidation failed", key=key, error=str(e))
        return False

    async def get_or_load(
        self,
        loader: Callable[[], Awaitable[Optional[T]]],
        *parts: str,
    ) -> Optional[T]:
        """Return the cached value, or load it, cache it and return it."""
        cached = await self.get(*parts)
        if cached is not None:
            logger.debug("Cache hit", key=self.key(*parts))
            return cached
        generation = self.generation
        value = await loader()
        if value is not None:
            await self.set_unless_invalidated(value, generation, *parts)
        return value
