"""Mutable per-user rank state and the value types that flow around it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class RankChangeReason(str, Enum):
    PROMOTION = "promotion"
    DEMOTION = "demotion"
    ADMIN_ADJUSTMENT = "admin-adjustment"


@dataclass
class UserRankState:
    """One row per user, created lazily on first activity."""

    user_id: str
    total_points: int = 0
    weekly_points: int = 0
    current_tier: int = 1
    highest_tier: int = 1
    streak_days: int = 0
    longest_streak: int = 0
    last_active_date: date | None = None
    last_streak_credit_date: date | None = None
    promotion_count: int = 0
    demotion_count: int = 0
    immunity_cycles: int = 0
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RankHistoryEntry:
    user_id: str
    old_tier: int
    new_tier: int
    reason: RankChangeReason
    timestamp: datetime
    points_at_time: int = 0
    detail: str = ""


@dataclass(frozen=True)
class UnlockedAchievement:
    code: str
    unlocked_at: datetime


@dataclass(frozen=True)
class Standing:
    """A user's leaderboard inputs: display name plus both point totals."""

    user_id: str
    display_name: str
    total_points: int
    weekly_points: int
    current_tier: int = 1


@dataclass
class ActivityOutcome:
    """What a single activity event did to a user's rank state."""

    user_id: str
    item_key: str
    credited: bool
    points_awarded: int = 0
    total_points: int = 0
    weekly_points: int = 0
    current_tier: int = 1
    streak_days: int = 0
    rank_changes: list[RankHistoryEntry] = field(default_factory=list)
    unlocked: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WeeklySnapshot:
    """A user's weekly standing as it was when the cycle closed the week.

    rank orders users by weekly points (ties by user_id). rank_change is
    rank minus last week's rank, so a negative value means the user
    climbed; None when the user has no snapshot for the previous week.
    """

    period_key: str
    user_id: str
    rank: int
    weekly_points: int
    total_points: int
    tier_before: int
    tier_after: int
    outcome: str
    rank_change: int | None = None
    created_at: datetime | None = None
