"""Shared test fixtures."""

from __future__ import annotations

from fnmatch import fnmatchcase
from unittest.mock import AsyncMock, MagicMock

import pytest

from learnrank.config import Settings
from learnrank.gamification.engine import GamificationEngine
from tests.fakes import InMemoryStore, InMemoryUnitOfWorkFactory


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store: InMemoryStore) -> InMemoryUnitOfWorkFactory:
    return InMemoryUnitOfWorkFactory(store)


@pytest.fixture
def redis_mock() -> MagicMock:
    """Stand-in for redis.asyncio.Redis covering the calls the engine makes.

    stored_keys is what SCAN walks; tests put cache keys there.
    """
    redis = MagicMock()
    redis.stored_keys = []

    async def scan_iter(match: str = "*", count: int | None = None):
        for key in list(redis.stored_keys):
            if fnmatchcase(key, match):
                yield key

    redis.publish = AsyncMock(return_value=1)
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.scan_iter = MagicMock(side_effect=scan_iter)
    redis.delete = AsyncMock(return_value=0)
    return redis


@pytest.fixture
def engine(uow_factory, settings, redis_mock) -> GamificationEngine:
    return GamificationEngine(uow_factory, settings=settings, redis=redis_mock)
