"""
Database configuration and session management.

Pool settings for PostgreSQL:
- Short pool with pre-ping so a cycle never reuses a dead connection
- Connection recycling to prevent stale connections
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from skyintel.core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def get_async_database_url(url: str) -> str:
    """Convert sync database URL to async version."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


settings = get_settings()
async_url = get_async_database_url(settings.database_url)

# SQLite doesn't support pool_size/max_overflow, only use them for PostgreSQL
if async_url.startswith("sqlite"):
    engine = create_async_engine(
        async_url,
        echo=False,
    )
else:
    engine = create_async_engine(
        async_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=180,
        pool_size=5,
        max_overflow=10,
        pool_timeout=10,
        connect_args={
            "timeout": 5,
            "command_timeout": 30,
        },
    )


AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def get_session_factory() -> async_sessionmaker:
    """Dependency returning the session factory used by storage backends."""
    return AsyncSessionLocal


async def init_db():
    """Initialize database tables."""
    # Import models so their tables are registered on Base.metadata
    from skyintel import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
