"""Pydantic models for inbound activity events and API responses."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


# item_key = "{kind}:{course_id}:{item_id}" must fit point_ledger.item_key (256).
COURSE_ID_MAX_LENGTH = 96
ITEM_ID_MAX_LENGTH = 128


class ActivityKind(str, Enum):
    CHAPTER_COMPLETE = "chapter-complete"
    QUIZ_ATTEMPT = "quiz-attempt"


class ActivityEvent(BaseModel):
    """A learning event from the course-progress subsystem.

    points_eligible is already priced by the course-points subsystem.
    The *_count fields are running counters that subsystem maintains.
    """

    user_id: str = Field(min_length=1, max_length=64)
    kind: ActivityKind
    course_id: str = Field(min_length=1, max_length=COURSE_ID_MAX_LENGTH)
    item_id: str = Field(min_length=1, max_length=ITEM_ID_MAX_LENGTH)
    points_eligible: float | None = None
    is_perfect_score: bool = False
    had_speed_bonus: bool = False
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    perfect_score_count: int | None = None
    speed_bonus_count: int | None = None
    courses_completed: int | None = None
    display_name: str | None = Field(default=None, max_length=128)

    @property
    def item_key(self) -> str:
        return f"{self.kind.value}:{self.course_id}:{self.item_id}"


# --- Tiers & achievements ---


class RankTierResponse(BaseModel):
    tier_number: int
    name: str
    min_points: int
    max_points: int | None = None
    tier_group: str
    icon: str = ""
    color: str = ""
    description: str = ""
    estimated_weeks: int | None = None


class AllTiersResponse(BaseModel):
    tiers: list[RankTierResponse]


class AchievementDefinitionResponse(BaseModel):
    code: str
    name: str
    description: str
    icon: str
    category: str
    rarity: str
    points_reward: int
    requirement: dict


class AllAchievementsResponse(BaseModel):
    achievements: list[AchievementDefinitionResponse]


# --- Activity ---


class RankChangeResponse(BaseModel):
    old_tier: int
    new_tier: int
    reason: str
    timestamp: datetime
    points_at_time: int = 0
    detail: str = ""


class ActivityOutcomeResponse(BaseModel):
    user_id: str
    item_key: str
    credited: bool
    points_awarded: int
    total_points: int
    weekly_points: int
    current_tier: int
    streak_days: int
    rank_changes: list[RankChangeResponse] = []
    unlocked: list[str] = []


class PointsAdjustmentRequest(BaseModel):
    total_points: int = Field(ge=0)
    detail: str = ""


# --- Profile ---


class UnlockedAchievementResponse(BaseModel):
    code: str
    name: str
    icon: str
    rarity: str
    points_reward: int
    unlocked_at: datetime


class RankProfileResponse(BaseModel):
    user_id: str
    total_points: int
    weekly_points: int
    tier: RankTierResponse
    next_tier: RankTierResponse | None = None
    progress: float
    progress_percentage: int
    highest_tier: int
    streak_days: int
    effective_streak: int
    longest_streak: int
    last_active_date: date | None = None
    immunity_cycles: int
    promotion_count: int
    demotion_count: int
    leaderboard_position: int
    history: list[RankChangeResponse] = []
    achievements: list[UnlockedAchievementResponse] = []


class RankHistoryResponse(BaseModel):
    entries: list[RankChangeResponse]


# --- Leaderboard ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    display_name: str
    points: int
    total_points: int
    weekly_points: int
    current_tier: int


class LeaderboardResponse(BaseModel):
    period: str
    search: str = ""
    entries: list[LeaderboardEntryResponse]
    total: int
    page: int
    per_page: int
    current_user: LeaderboardEntryResponse | None = None


# --- Weekly cycle ---


class CycleReportResponse(BaseModel):
    ran: bool
    period_key: str | None = None
    evaluated: int = 0
    demotions: int = 0
    immunity_consumed: int = 0
    maintained: int = 0
    failed: list[str] = []


class CycleRunResponse(BaseModel):
    period_key: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    stats: dict = {}


class WeeklySnapshotResponse(BaseModel):
    user_id: str
    rank: int
    weekly_points: int
    total_points: int
    tier_before: int
    tier_after: int
    outcome: str
    rank_change: int | None = None
    created_at: datetime | None = None


class WeeklyStandingsResponse(BaseModel):
    period_key: str
    entries: list[WeeklySnapshotResponse]
    total: int
    page: int
    per_page: int
