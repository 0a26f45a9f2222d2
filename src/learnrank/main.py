"""FastAPI application factory for the rank API."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from learnrank.config import Settings, get_settings
from learnrank.database import close_db, create_schema, get_session_factory, init_db
from learnrank.db.repositories import seed_achievements
from learnrank.dependencies import get_engine
from learnrank.gamification.rank_tiers import RANK_TIERS, validate_tiers
from learnrank.gamification.router import router as gamification_router
from learnrank.health.router import router as health_router
from learnrank.middleware import setup_middleware
from learnrank.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def _prepare_storage(settings: Settings) -> None:
    if settings.auto_create_schema:
        await create_schema()
    try:
        async with get_session_factory()() as session:
            await seed_achievements(session)
    except Exception:
        # Ranks are still served without definitions; only unlocks wait.
        logger.warning("Achievement seeding failed", exc_info=True)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    validate_tiers(RANK_TIERS)

    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    await _prepare_storage(settings)
    logger.info("Rank API ready with %d tiers", len(RANK_TIERS))

    yield

    # The cached engine holds the Redis client closed below.
    get_engine.cache_clear()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="LearnRank Gamification API",
        description="Ranks, streaks, achievements and leaderboards for the learning platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)
    return app


app = create_app()
