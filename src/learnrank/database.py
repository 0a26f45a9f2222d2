"""Async SQLAlchemy engine and the session factory behind each unit of work."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from learnrank.db.base import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(url: str, pool_size: int = 20, max_overflow: int = 10) -> None:
    """Create the engine and session factory for this process."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        # asyncpg prepared statements break behind pgbouncer
        connect_args={"statement_cache_size": 0},
    )
    # Rank state is copied into dataclasses, so ORM rows never outlive a commit.
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        msg = "Database engine missing: init_db() has not run"
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        msg = "Session factory missing: init_db() has not run"
        raise RuntimeError(msg)
    return _session_factory


async def create_schema() -> None:
    """Create the gamification tables that do not exist yet."""
    import learnrank.db.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session outside any unit of work (FastAPI dependency)."""
    async with get_session_factory()() as session:
        yield session
