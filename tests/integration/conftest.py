"""Fixtures for tests that run against a real Postgres.

Point LRN_DATABASE_URL at a disposable database: every test truncates
the gamification tables (and users) before it runs. Without a reachable
server the tests are skipped.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learnrank.database import close_db, create_schema, get_session_factory, init_db
from learnrank.db.repositories import seed_achievements, sql_uow_factory

_TABLES = (
    "weekly_snapshots",
    "weekly_cycle_runs",
    "user_achievements",
    "achievement_definitions",
    "rank_history",
    "point_ledger",
    "user_ranks",
    "users",
)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a freshly truncated, seeded schema."""
    url = os.environ.get("LRN_DATABASE_URL")
    if not url:
        pytest.skip("LRN_DATABASE_URL is not set")

    await init_db(url, pool_size=5, max_overflow=0)
    try:
        try:
            await asyncio.wait_for(create_schema(), timeout=10)
        except (OSError, SQLAlchemyError, asyncio.TimeoutError) as e:
            pytest.skip(f"Postgres unreachable: {e}")

        factory = get_session_factory()
        async with factory() as session:
            await session.execute(text(f"TRUNCATE TABLE {', '.join(_TABLES)} CASCADE"))
            await session.commit()
            await seed_achievements(session)
        yield factory
    finally:
        await close_db()


@pytest.fixture
def sql_uow(session_factory):
    return sql_uow_factory(session_factory)
