"""Database connection configuration."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy import text

from config.settings import get_settings

logger = logging.getLogger(__name__)

# Global engine (initialized lazily)
_engine: Optional[AsyncEngine] = None
_AsyncSessionLocal: Optional[async_sessionmaker] = None


def get_database_url() -> str:
    """Get database URL with proper async driver."""
    database_url = get_settings().database_url

    # Convert postgres:// to postgresql+asyncpg://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    if "@" in database_url:
        logger.info(f"Database host: {database_url.split('@')[1].split('/')[0]}")
    return database_url


def _create_engine(url: str) -> AsyncEngine:
    settings = get_settings()
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live in a single connection
        if url.endswith("://") or ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=settings.debug, **kwargs)

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


def configure_engine(url: str) -> AsyncEngine:
    """Replace the global engine, e.g. to point at a test database."""
    global _engine, _AsyncSessionLocal
    _engine = _create_engine(url)
    _AsyncSessionLocal = None
    return _engine


def get_engine() -> AsyncEngine:
    """Get or create engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = _create_engine(get_database_url())
    return _engine


def get_session_maker() -> async_sessionmaker:
    """Get or create session maker (lazy initialization)."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _AsyncSessionLocal


async def init_db() -> None:
    """Initialize database tables."""
    from database.models import Base

    try:
        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        raise


@asynccontextmanager
async def get_db_context() -> AsyncIterator[AsyncSession]:
    """Database session as an async context manager; commits on success."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_db_connection() -> bool:
    """Check if database connection is working."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        logger.error(f"❌ Database connection check failed: {e}")
        return False


async def close_db() -> None:
    """Close database connections."""
    global _engine, _AsyncSessionLocal
    if _engine:
        await _engine.dispose()
        _engine = None
        _AsyncSessionLocal = None
        logger.info("Database connections closed")
