"""Shared FastAPI dependencies."""

from functools import lru_cache

from learnrank.config import get_settings
from learnrank.database import get_session_factory
from learnrank.db.repositories import sql_uow_factory
from learnrank.gamification.engine import GamificationEngine
from learnrank.redis_client import get_redis


@lru_cache
def get_engine() -> GamificationEngine:
    """One engine per process, built once the DB and Redis pools exist."""
    return GamificationEngine(
        sql_uow_factory(get_session_factory()),
        settings=get_settings(),
        redis=get_redis(),
    )
