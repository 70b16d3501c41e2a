"""
Async SQLAlchemy engine and session factory.

Production runs on PostgreSQL (``postgresql+asyncpg://``); local development
and the test-suite use SQLite through aiosqlite.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the configured database."""
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live as long as their single connection
        if database_url.endswith("://") or ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool

    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    from . import models  # noqa: F401  registers the mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
