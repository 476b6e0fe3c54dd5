"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg
- async session factory handed to the Pg* gateways
- lifespan hook for startup/shutdown

When DATABASE_URL is None (no database configured), all exports are None
and the engine falls back to in-memory gateways.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from progress_engine.core.config import SETTINGS
from progress_engine.core.errors import StorageError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


# --- Engine and session factory (None when no DATABASE_URL) ---

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,  # log SQL in dev only
        pool_size=5,
        max_overflow=10,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


@asynccontextmanager
async def lifespan_db() -> AsyncIterator[None]:
    """Startup/shutdown hook for the database engine."""
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory gateways")
        yield
        return

    logger.info("Database engine created: %s", engine.url)
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Surface driver/ORM failures as the engine's StorageError.

    The message keeps the operation name and the original error text; the
    original exception stays attached as __cause__ for the traceback.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Storage operation %s failed: %s", operation, exc)
        raise StorageError(f"{operation} failed: {exc}") from exc
