"""
Database engine and session factory.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chainscreen.config import settings
from chainscreen.db.orm import Base

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """Create the async engine; defaults come from settings."""
    kwargs.setdefault("echo", settings.debug)
    kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(database_url or settings.database_url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
