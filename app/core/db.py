import logging
import re
from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings
from app.models.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    database_url = get_async_database_url(url)
    engine_kwargs: Dict[str, Any] = {
        "future": True,
        "echo": echo,
        "pool_pre_ping": True,  # Verify connections before using
    }
    if database_url.startswith("postgresql"):
        engine_kwargs.update(
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_timeout=10,    # Wait up to 10 seconds for a connection from pool
            max_overflow=10,    # Allow extra connections beyond pool_size
            connect_args={"connect_timeout": 10},
        )
    logger.info("Creating database engine with URL: %s@***", database_url.split("@")[0])
    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine: AsyncEngine = build_engine(settings.database_url, echo=settings.debug)

AsyncSessionFactory = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionFactory() as session:
        yield session


async def init_database(bind: AsyncEngine = engine) -> None:
    """Create all tables. In production use Alembic migrations instead."""
    logger.info("Initializing database tables...")
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized successfully")


async def check_database_connection(bind: AsyncEngine = engine) -> bool:
    """Check that the database answers a trivial query."""
    try:
        async with bind.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()
    except Exception as e:
        logger.error(f"Database connection test failed: {type(e).__name__}: {e}")
        return False
    return True
