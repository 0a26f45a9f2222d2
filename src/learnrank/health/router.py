"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnrank.config import get_settings
from learnrank.database import get_session
from learnrank.db.models import AchievementDefinitionRow
from learnrank.gamification.rank_tiers import RANK_TIERS
from learnrank.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    response: Response,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Ready once Postgres answers, Redis answers and achievements are seeded."""
    checks: dict[str, object] = {}

    try:
        seeded = (await db.execute(select(func.count()).select_from(AchievementDefinitionRow))).scalar_one()
        checks["database"] = "ok" if seeded else "error: no achievement definitions"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    if any(v != "ok" for v in checks.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "degraded", "checks": checks}
    return {"status": "ready", "checks": checks}


@router.get("/version")
async def version() -> dict[str, object]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "rank_tiers": len(RANK_TIERS),
    }
