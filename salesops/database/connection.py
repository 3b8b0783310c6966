"""
Order Store Connection

One async engine per process, opened by the report runner and disposed
when the report is printed.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from sqlalchemy import text

from salesops.config import get_settings

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and verify the store is reachable.

    Args:
        url: Async database URL, defaults to the configured one
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    db_settings = get_settings().database
    # asyncpg pools its own connections
    _engine = create_async_engine(
        url or db_settings.async_url,
        echo=db_settings.echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Order store unreachable", error=str(e))
        await close_database()
        raise

    logger.info("Order store connected", url=_engine.url.render_as_string(hide_password=True))
    return _engine


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Session scoped to one report run.

    Commits cost write-backs on success, rolls back on error.

    Example:
        async with get_db() as db:
            store = OrderStore(db)
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error("Report session failed, rolling back", error=str(e), error_type=type(e).__name__)
        await session.rollback()
        raise
    finally:
        await session.close()
