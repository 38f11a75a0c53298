"""
Database engine configuration for the Lead Marketplace core

Async SQLAlchemy 2.0 setup with connection pooling
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from config.config import DATABASE_URL, ENVIRONMENT, DB_POOL_SIZE, DB_MAX_OVERFLOW
from src.database.models import Base

logger = logging.getLogger(__name__)


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Create and configure async database engine

    Returns:
        Configured AsyncEngine instance
    """
    global engine

    if engine is None:
        if DATABASE_URL.startswith("sqlite"):
            # Local development; writers serialize on the database lock
            engine = create_async_engine(
                DATABASE_URL,
                echo=False,
                connect_args={"timeout": 30},
            )
        else:
            is_production = ENVIRONMENT == "production"

            engine = create_async_engine(
                DATABASE_URL,
                pool_size=DB_POOL_SIZE * 2 if is_production else DB_POOL_SIZE,
                max_overflow=DB_MAX_OVERFLOW * 2 if is_production else DB_MAX_OVERFLOW,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,  # Recycle connections every hour
                echo=False,
                echo_pool=False,
                connect_args={
                    "server_settings": {
                        "application_name": "lead_marketplace_core",
                    },
                },
            )

        logger.info(f"Database engine created - Environment: {ENVIRONMENT}")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Create async session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        eng = get_engine()
        AsyncSessionLocal = async_sessionmaker(
            eng,
            class_=AsyncSession,
            expire_on_commit=False,  # Important for async!
            autoflush=False,
        )

        logger.info("Session maker created")

    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database session

    Usage in handlers:
        async def handler(session: AsyncSession = Depends(get_session)):
            ...

    Yields:
        AsyncSession instance
    """
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session error: {e}", exc_info=True)
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    One unit of work: commit on success, roll back on any exit path

    Cancellation and timeouts also roll back, so a unit interrupted midway
    leaves no partial writes behind.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise


async def init_db() -> None:
    """
    Initialize database - create all tables
    """
    eng = get_engine()

    logger.info("Creating database tables...")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """
    Check database connection

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = get_engine()
        async with eng.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check: OK")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}", exc_info=True)
        return False
