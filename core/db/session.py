from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from core.config import config


def get_engine_config(database_url: str) -> Dict[str, Any]:
    """Build engine keyword arguments for the configured backend.

    Args:
        database_url: Database connection URL

    Returns:
        Dict of engine configuration parameters
    """
    engine_kwargs: Dict[str, Any] = {"echo": False}

    if database_url.startswith("postgresql"):
        engine_kwargs.update({
            "pool_size": config.DATABASE_POOL_SIZE,
            "max_overflow": config.DATABASE_MAX_OVERFLOW,
            "pool_recycle": 3600,
            "pool_pre_ping": True,
        })
    elif database_url.startswith("sqlite"):
        # One connection per session so concurrent allocations really race
        engine_kwargs.update({
            "connect_args": {"check_same_thread": False, "timeout": 30},
            "poolclass": NullPool,
        })

    return engine_kwargs


def enable_sqlite_foreign_keys(async_engine: AsyncEngine) -> None:
    """Turn on FK enforcement for every new SQLite connection."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    config.DATABASE_URL,
    **get_engine_config(config.DATABASE_URL)
)

if config.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides an async database session.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
