"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg
- async session factory used by the enrollment source repo
- a lifespan hook for startup/shutdown

When DATABASE_URL is None, all exports are None and the app falls back to
the in-memory enrollment source.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from enrollment_hub.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=False,
        # the unification pass holds one connection for three large SELECTs
        pool_size=5,
        max_overflow=5,
    )
    async_session_factory: async_sessionmaker[AsyncSession] | None = (
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    )
else:
    engine = None
    async_session_factory = None


@asynccontextmanager
async def lifespan_db() -> AsyncGenerator[None, None]:
    """Startup/shutdown hook for the database engine."""
    if engine is None:
        logger.info("No DATABASE_URL configured; using the in-memory enrollment source")
        yield
        return

    logger.info("Database engine created: %s", engine.url.render_as_string())
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
