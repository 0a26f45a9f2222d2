"""Rank, achievement and leaderboard API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query

from learnrank.dependencies import get_engine
from learnrank.gamification.engine import GamificationEngine, history_payload, tier_payload
from learnrank.gamification.leaderboard_service import LeaderboardPeriod
from learnrank.gamification.schemas import (
    ActivityEvent,
    ActivityOutcomeResponse,
    AllAchievementsResponse,
    AllTiersResponse,
    CycleReportResponse,
    CycleRunResponse,
    LeaderboardResponse,
    PointsAdjustmentRequest,
    RankHistoryResponse,
    RankProfileResponse,
    WeeklyStandingsResponse,
)
from learnrank.gamification.state import ActivityOutcome

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


def _outcome_response(outcome: ActivityOutcome) -> ActivityOutcomeResponse:
    return ActivityOutcomeResponse(
        user_id=outcome.user_id,
        item_key=outcome.item_key,
        credited=outcome.credited,
        points_awarded=outcome.points_awarded,
        total_points=outcome.total_points,
        weekly_points=outcome.weekly_points,
        current_tier=outcome.current_tier,
        streak_days=outcome.streak_days,
        rank_changes=[history_payload(e) for e in outcome.rank_changes],
        unlocked=outcome.unlocked,
    )


# ── Public endpoints ──


@router.get("/ranks/tiers", response_model=AllTiersResponse)
async def list_tiers(engine: GamificationEngine = Depends(get_engine)):
    """All rank tiers, lowest first."""
    return AllTiersResponse(tiers=[tier_payload(t) for t in engine.tiers])


@router.get("/achievements", response_model=AllAchievementsResponse)
async def list_achievements(engine: GamificationEngine = Depends(get_engine)):
    return AllAchievementsResponse(achievements=await engine.list_achievements())


@router.get("/users/{user_id}/rank", response_model=RankProfileResponse)
async def get_rank_profile(user_id: str, engine: GamificationEngine = Depends(get_engine)):
    """Tier, progress, streak, leaderboard position and unlocked achievements."""
    return await engine.get_profile(user_id)


@router.get("/users/{user_id}/rank/history", response_model=RankHistoryResponse)
async def get_rank_history(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    engine: GamificationEngine = Depends(get_engine),
):
    """Most recent tier changes first."""
    return RankHistoryResponse(entries=await engine.get_history(user_id, limit))


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: LeaderboardPeriod = Query(LeaderboardPeriod.ALL_TIME),
    search: str | None = Query(None, max_length=64),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    user_id: str | None = Query(None, description="Include this user's own entry"),
    engine: GamificationEngine = Depends(get_engine),
):
    return await engine.query_leaderboard(period, search, page, per_page, user_id)


@router.get("/leaderboard/weeks/{period_key}", response_model=WeeklyStandingsResponse)
async def get_weekly_standings(
    period_key: str = Path(pattern=r"^\d{4}-W\d{2}$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    engine: GamificationEngine = Depends(get_engine),
):
    """Standings of a week the cycle has closed; empty for weeks it has not."""
    return await engine.weekly_standings(period_key, page, per_page)


# ── Ingestion ──


@router.post("/activity", response_model=ActivityOutcomeResponse)
async def record_activity(event: ActivityEvent, engine: GamificationEngine = Depends(get_engine)):
    """Credit a chapter completion or quiz attempt. Replays are no-ops."""
    return _outcome_response(await engine.record_activity(event))


# ── Admin ──


@router.post("/admin/users/{user_id}/points", response_model=ActivityOutcomeResponse)
async def adjust_points(
    user_id: str,
    body: PointsAdjustmentRequest,
    engine: GamificationEngine = Depends(get_engine),
):
    """Correct a user's total; the tier follows it in either direction."""
    return _outcome_response(await engine.adjust_points(user_id, body.total_points, body.detail))


@router.post("/admin/cycle/run", response_model=CycleReportResponse)
async def run_weekly_cycle(engine: GamificationEngine = Depends(get_engine)):
    """Run this week's cycle now. A week that already ran reports ran=false."""
    report = await engine.run_cycle()
    if report is None:
        return CycleReportResponse(ran=False)
    return CycleReportResponse(ran=True, **report.as_dict())


@router.get("/admin/cycle/last", response_model=CycleRunResponse | None)
async def get_last_cycle_run(engine: GamificationEngine = Depends(get_engine)):
    return await engine.last_cycle_run()
