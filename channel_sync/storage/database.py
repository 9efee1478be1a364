"""
Async database engine and session management for the channel sync tables
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from channel_sync.config import SyncSettings
from channel_sync.storage.models import Base
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.database")


def create_engine(settings: SyncSettings, **engine_kwargs) -> AsyncEngine:
    """Create the async engine; pool options apply to server databases only."""
    if not settings.database_url.startswith("sqlite"):
        engine_kwargs.setdefault("pool_size", settings.database_pool_size)
        engine_kwargs.setdefault("max_overflow", settings.database_pool_size * 2)
        engine_kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(settings.database_url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create the sync tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("sync_tables_created", tables=sorted(Base.metadata.tables))


class Database:
    """Engine plus session factory owned by one process"""

    def __init__(self, settings: SyncSettings, engine: Optional[AsyncEngine] = None):
        self.settings = settings
        self.engine = engine or create_engine(settings)
        self.session_factory = create_session_factory(self.engine)

    async def create_tables(self) -> None:
        await create_tables(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()
