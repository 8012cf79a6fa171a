"""
SQLAlchemy async database client for the video tracking service.

Provides async connection management using SQLAlchemy Core with asyncpg.
Every ingestion batch runs inside one get_transaction() block; admin reads
use get_connection() and never take row locks.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .tables import metadata  # noqa: F401 - exported for Alembic

# Module-level engine (created on first use)
_engine: AsyncEngine | None = None


def _get_database_url() -> str:
    """
    Construct async database URL from environment variables.

    Hosted Postgres connection strings look like:
        postgresql://postgres.[project-ref]:[password]@[host]:6543/postgres

    For asyncpg, we need:
        postgresql+asyncpg://...
    """
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError(
            "DATABASE_URL environment variable must be set "
            "(PostgreSQL connection string)"
        )

    # Convert postgresql:// to postgresql+asyncpg://
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return database_url


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine singleton."""
    global _engine
    if _engine is None:
        database_url = _get_database_url()
        _engine = create_async_engine(
            database_url,
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
            # Ingestion handlers are short; keep the pool small but elastic
            pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,  # Recycle connections every 30 minutes
            pool_pre_ping=True,
        )
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """
    Get an async database connection from the pool.

    Usage:
        async with get_connection() as conn:
            result = await conn.execute(select(video_views))
            rows = result.mappings().all()
    """
    engine = get_engine()
    async with engine.connect() as conn:
        yield conn


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncConnection, None]:
    """
    Get an async database connection with automatic transaction management.
    Commits on success, rolls back on exception (including cancellation).

    Usage:
        async with get_transaction() as conn:
            await conn.execute(insert(video_views).values(...))
            # Auto-commits if no exception
    """
    engine = get_engine()
    async with engine.begin() as conn:
        yield conn


async def set_lock_timeout(conn: AsyncConnection, timeout_ms: int) -> None:
    """Bound row-lock waits for the rest of the current transaction."""
    # SET LOCAL does not accept bind parameters
    await conn.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))


async def close_engine() -> None:
    """Close the engine and all connections. Call on shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def is_configured() -> bool:
    """Check if database credentials are configured."""
    return bool(os.environ.get("DATABASE_URL"))


def get_sync_database_url() -> str:
    """
    Get synchronous database URL for Alembic migrations.

    Alembic runs migrations synchronously, so we need a psycopg2 URL.
    """
    database_url = os.environ.get("DATABASE_URL", "")

    # Use psycopg2 driver for sync operations
    if "postgresql+asyncpg://" in database_url:
        return database_url.replace("postgresql+asyncpg://", "postgresql://")
    if database_url.startswith("postgresql://"):
        return database_url

    raise ValueError("DATABASE_URL must be set for migrations")
