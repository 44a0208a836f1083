"""Async SQLAlchemy engine and session factory.

Uses psycopg3 which supports both sync and async with the same
``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def normalize_url(database_url: str) -> str:
    """Force the psycopg3 driver on plain or asyncpg PostgreSQL URLs."""
    for prefix in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix) :]
    return database_url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Pool defaults (``pool_size=5``, ``max_overflow=10``, pre-ping, hourly
    recycle) suit a single service instance; background tasks each hold a
    connection only for the duration of a state transition or output flush.

    All defaults can be overridden via *kwargs*.
    """
    defaults = {
        "echo": False,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    defaults.update(kwargs)  # type: ignore[arg-type]
    return create_async_engine(normalize_url(database_url), **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` so ORM instances stay readable after commit
    without implicit IO.
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def lock_workspace(db: AsyncSession, scope: str, workspace_id: str) -> None:
    """Take a transaction-scoped advisory lock on ``{scope}:{workspace_id}``.

    Held until the session commits or rolls back; writers replacing the
    same workspace's rows run one after another.
    """
    await db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": f"{scope}:{workspace_id}"})
