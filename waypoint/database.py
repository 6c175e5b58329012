"""
Database engine and session factory management.
Handles PostgreSQL + pgvector setup with SQLAlchemy async engine.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import Optional
import logging

from waypoint.config import settings
from waypoint.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Base class for ORM models
Base = declarative_base()

# Engine and session factory are created lazily so that importing the ORM
# models (tests, alembic) never needs a reachable database.
_engine = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine():
    """Return the process-wide async engine, creating it on first use."""
    global _engine
    if _engine is None:
        if not settings.DATABASE_URL:
            raise ConfigurationError("DATABASE_URL environment variable is required")
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,  # Set to True for SQL query logging
            future=True,
            pool_pre_ping=True,
            poolclass=NullPool,  # Use NullPool for better async compatibility
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Return the async session factory bound to :func:`get_engine`."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db() -> None:
    """
    Initialize database tables and pgvector extension.
    Creates all tables defined in Base metadata.
    """
    try:
        async with get_engine().begin() as conn:
            # Import all models to ensure they're registered
            from waypoint.models import database_models  # noqa: F401

            # Create pgvector extension
            await conn.execute(
                text("CREATE EXTENSION IF NOT EXISTS vector")
            )
            logger.info("pgvector extension created/verified")

            # Create all tables
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created/verified")

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def close_db() -> None:
    """Close database connections gracefully."""
    global _engine, _session_factory
    if _engine is None:
        return
    try:
        await _engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")
        raise
    finally:
        _engine = None
        _session_factory = None
