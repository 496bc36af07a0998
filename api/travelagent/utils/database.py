"""
PostgreSQL Database Connection & Session Management
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
from typing import Optional
import logging

from travelagent.config import settings

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for Python-side column defaults"""
    return datetime.now(timezone.utc)


# Engine and session factory, created by init_db() on startup
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def create_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    """Create async engine with pool settings for PostgreSQL"""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=settings.DEBUG)

    return create_async_engine(
        database_url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_timeout=10,  # Wait max 10 seconds for a connection from pool
        connect_args={
            "command_timeout": 30,  # Query timeout in seconds
            "server_settings": {
                "statement_timeout": "30000",  # 30 seconds max per statement
            }
        },
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the services, one session per operation"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(database_url: str = settings.DATABASE_URL) -> async_sessionmaker:
    """Initialize database connection"""
    global engine, AsyncSessionLocal
    logger.info("Initializing database connection...")
    engine = create_engine(database_url)
    AsyncSessionLocal = create_session_factory(engine)
    # Test connection
    async with engine.begin() as conn:
        await conn.run_sync(lambda c: None)
    logger.info("Database connection established")
    return AsyncSessionLocal


async def create_tables():
    """Create all tables (development and tests; production uses migrations)"""
    import travelagent.models  # noqa: F401 - register mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connection"""
    global engine, AsyncSessionLocal
    if engine is not None:
        logger.info("Closing database connection...")
        await engine.dispose()
        engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker:
    """Return the session factory created on startup"""
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized, call init_db() first")
    return AsyncSessionLocal


async def get_db() -> AsyncSession:
    """
    Dependency that provides a database session
    Usage: db: AsyncSession = Depends(get_db)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
