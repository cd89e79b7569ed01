"""Async database engine and session management."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from revolucare.storage.models import Base
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)


class Database:
    """
    Owns the async engine and hands out transactional sessions.

    Each ``session()`` block is one unit of work: committed on success,
    rolled back on any exception.
    """

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        connect_args = engine_kwargs.pop("connect_args", {})
        if url.startswith("sqlite"):
            # Writers wait on the SQLite lock instead of failing immediately
            connect_args.setdefault("timeout", 15)
        self.url = url
        self.engine: AsyncEngine = create_async_engine(
            url, echo=echo, connect_args=connect_args, **engine_kwargs
        )
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session wrapped in a transaction."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema initialized")

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")
