"""Gamification arq worker: weekly cycle cron.

Import path for arq CLI: arq learnrank.workers.gamification_worker.WorkerSettings

The activity stream consumer runs as its own process, see
learnrank.workers.activity_runner.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from learnrank.config import get_settings
from learnrank.database import close_db, get_session_factory, init_db
from learnrank.db.repositories import sql_uow_factory
from learnrank.gamification.engine import GamificationEngine
from learnrank.redis_client import create_redis

logger = logging.getLogger(__name__)

_settings = get_settings()


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)

    redis_client = create_redis(settings.redis_url, max_connections=10)
    ctx["redis"] = redis_client
    ctx["engine"] = GamificationEngine(
        sql_uow_factory(get_session_factory()), settings=settings, redis=redis_client,
    )
    logger.info("Gamification worker started")


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Gamification worker shut down")


async def weekly_cycle(ctx: dict) -> dict | None:  # type: ignore[type-arg]
    """Scheduled task: demotion evaluation and weekly reset."""
    engine: GamificationEngine = ctx["engine"]
    report = await engine.run_cycle()
    return report.as_dict() if report is not None else None


class WorkerSettings:
    """arq worker settings for the gamification worker."""

    functions = [weekly_cycle]
    cron_jobs = [
        cron(
            weekly_cycle,
            weekday=_settings.weekly_cycle_weekday,
            hour=_settings.weekly_cycle_hour,
            minute=_settings.weekly_cycle_minute,
            run_at_startup=False,
            unique=True,
            timeout=_settings.weekly_cycle_timeout_seconds,
        ),
    ]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    max_jobs = 4
    job_timeout = 300
