import logging
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from sqlalchemy import BigInteger, Integer

from core.config import settings

logger = logging.getLogger(__name__)

# BIGINT primary keys only autoincrement on SQLite when declared as INTEGER
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def _engine_kwargs() -> dict:
    kwargs = {"echo": settings.database_echo}
    if not settings.is_sqlite:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
        kwargs["pool_pre_ping"] = True
    return kwargs


db_engine = create_async_engine(settings.database_url, **_engine_kwargs())


# Create async session maker to be used throughout the application
AsyncSessionLocal = async_sessionmaker(
    db_engine, class_=AsyncSession, expire_on_commit=False
)


# Base class for declarative models
class Base(DeclarativeBase):
    pass


def create_task_engine() -> AsyncEngine:
    """
    Build a throwaway engine for code that runs its own event loop.

    Celery tasks call ``asyncio.run`` per invocation, and pooled asyncpg
    connections cannot cross event loops, so these engines never pool.
    """
    return create_async_engine(
        settings.database_url, echo=settings.database_echo, poolclass=NullPool
    )


# Dependency to get DB session
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


# Function to initialize the database (create tables)
async def init_db():
    # Register every model on Base.metadata before create_all
    import database.models  # noqa: F401

    logger.info("Initializing database schema")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Function to close database connections
async def close_db():
    """Close database engine and connections."""
    await db_engine.dispose()
