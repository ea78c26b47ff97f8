"""
Database Persistence Layer - Core Engine.

============================================================
ASYNC DATABASE PERSISTENCE
============================================================

Async SQLAlchemy engine and session factory for the broker
and order tables.

Requirements:
- SQLAlchemy 2.x async ORM (asyncpg on PostgreSQL)
- One short transaction per repository call
- Hard failures on persistence errors

The engine and session factory are created by the
application at startup and handed to repositories; nothing
here is a module-level singleton.

============================================================
"""

import os
import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# =============================================================
# DECLARATIVE BASE
# =============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# =============================================================
# EXCEPTIONS
# =============================================================

class DatabasePersistenceError(Exception):
    """A database write failed."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """The database is unreachable."""
    pass


# =============================================================
# DATABASE ENGINE
# =============================================================

def get_database_url() -> str:
    """Get async database URL from environment."""
    load_dotenv()

    url = os.getenv("DATABASE_URL")
    if not url:
        url = "postgresql+asyncpg://localhost:5432/tradingflow"
        logger.warning(f"DATABASE_URL not set, using default: {url.split('@')[-1]}")

    if url.startswith("postgresql://"):
        # Plain URLs select the sync driver
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def create_database_engine(
    database_url: str = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    Args:
        database_url: Async database URL (defaults to DATABASE_URL)
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    database_url = database_url or get_database_url()

    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


async def session_scope(factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session and always close it.

    Usage (FastAPI dependency):
        async for session in session_scope(factory):
            ...
    """
    async with factory() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error, rolling back: {e}")
            await session.rollback()
            raise


# =============================================================
# DATABASE INITIALIZATION
# =============================================================

async def verify_database_connection(engine: AsyncEngine) -> bool:
    """
    Verify database connection is working.

    Raises:
        DatabaseConnectionError if connection fails
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified successfully")
        return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e


async def create_all_tables(engine: AsyncEngine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        DatabasePersistenceError if table creation fails
    """
    # Register models with Base
    from broker_engine import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabasePersistenceError(f"Table creation failed: {e}") from e
