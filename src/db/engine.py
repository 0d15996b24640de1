"""Async database engine, session factory, Redis client and lifespan hooks.

SQLAlchemy 2.0 async over asyncpg. Each HTTP request gets one session and
therefore one transaction: the advisory locks the workflow engine takes are
released by the commit (or rollback) at the end of ``get_session``.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.admin.events import discard_deferred, publish_deferred
from src.config import settings

logger = logging.getLogger(__name__)

# ── PostgreSQL ───────────────────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=False,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success.

    Events the workflow deferred on the session are published after the
    commit, and dropped on rollback.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_deferred(session)
            raise
        await publish_deferred(session)


# ── Redis (submission throttle) ──────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Lifespan ─────────────────────────────────────────────────────────


def uses_database() -> bool:
    return settings.workflow.storage_backend != "memory"


async def init_db() -> None:
    """Check connectivity; optionally create tables for local development."""
    if not uses_database():
        logger.warning("Storage backend is 'memory': requests are lost on restart")
        return

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if settings.db.create_tables and not settings.is_production:
            import src.models  # noqa: F401  (registers every table on Base.metadata)
            from src.models.base import Base

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created from metadata")


async def close_db() -> None:
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Wrap the app lifespan: ``async with db_lifespan(): yield``."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
