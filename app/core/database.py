"""Async SQLAlchemy engine, session factory and transaction boundary."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with async_session() as session:
        yield session


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Unit of work: commit when the block succeeds, roll back on any error.

    Every check and write inside the block shares one database transaction,
    so a conflict check and the insert that follows it cannot be separated
    by a concurrent commit that the row locks would have blocked.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
