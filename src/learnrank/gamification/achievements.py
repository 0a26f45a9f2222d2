"""Achievement definitions and their requirement predicates.

Requirements are a closed set of frozen dataclasses. Definitions are
stored as JSON ({"kind": ..., ...}) and parsed back into this union;
a kind this module does not know becomes UnknownRequirement, which
never matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Union

from learnrank.gamification.state import UserRankState

STREAK_DAYS = "streak_days"
PERFECT_SCORES = "perfect_scores"
SPEED_BONUSES = "speed_bonuses"
COURSES_COMPLETED = "courses_completed"
COMPLETION_TIME_RANGE = "completion_time_range"
TOTAL_POINTS = "total_points"

REQUIREMENT_KINDS = frozenset({
    STREAK_DAYS,
    PERFECT_SCORES,
    SPEED_BONUSES,
    COURSES_COMPLETED,
    COMPLETION_TIME_RANGE,
    TOTAL_POINTS,
})


@dataclass(frozen=True)
class AchievementTrigger:
    """Why the evaluator is running, plus counters owned by activity ingestion.

    kinds=None means every requirement kind is worth checking.
    """

    kinds: frozenset[str] | None = None
    perfect_score_count: int | None = None
    speed_bonus_count: int | None = None
    courses_completed: int | None = None
    completed_at: datetime | None = None

    def wants(self, kind: str) -> bool:
        return self.kinds is None or kind in self.kinds

    @classmethod
    def streak(cls) -> AchievementTrigger:
        return cls(kinds=frozenset({STREAK_DAYS}))

    @classmethod
    def points(cls) -> AchievementTrigger:
        return cls(kinds=frozenset({TOTAL_POINTS}))


@dataclass(frozen=True)
class StreakDays:
    days: int
    kind: str = field(default=STREAK_DAYS, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return state.streak_days >= self.days


@dataclass(frozen=True)
class PerfectScores:
    count: int
    kind: str = field(default=PERFECT_SCORES, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return trigger.perfect_score_count is not None and trigger.perfect_score_count >= self.count


@dataclass(frozen=True)
class SpeedBonuses:
    count: int
    kind: str = field(default=SPEED_BONUSES, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return trigger.speed_bonus_count is not None and trigger.speed_bonus_count >= self.count


@dataclass(frozen=True)
class CoursesCompleted:
    count: int
    kind: str = field(default=COURSES_COMPLETED, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return trigger.courses_completed is not None and trigger.courses_completed >= self.count


@dataclass(frozen=True)
class CompletionTimeRange:
    """Completion time of day within [start, end], compared to the minute.

    A range whose start is after its end wraps past midnight.
    """

    start: time
    end: time
    kind: str = field(default=COMPLETION_TIME_RANGE, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        if trigger.completed_at is None:
            return False
        minute = _minute_of_day(trigger.completed_at.time())
        start = _minute_of_day(self.start)
        end = _minute_of_day(self.end)
        if start <= end:
            return start <= minute <= end
        return minute >= start or minute <= end


@dataclass(frozen=True)
class TotalPoints:
    points: int
    kind: str = field(default=TOTAL_POINTS, init=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return state.total_points >= self.points


@dataclass(frozen=True)
class UnknownRequirement:
    """Requirement of a kind this release does not understand."""

    kind: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def is_met(self, state: UserRankState, trigger: AchievementTrigger) -> bool:
        return False


Requirement = Union[
    StreakDays,
    PerfectScores,
    SpeedBonuses,
    CoursesCompleted,
    CompletionTimeRange,
    TotalPoints,
    UnknownRequirement,
]


def _minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def parse_requirement(raw: dict[str, Any]) -> Requirement:
    """Build a requirement from its stored JSON form."""
    kind = str(raw.get("kind", ""))
    try:
        if kind == STREAK_DAYS:
            return StreakDays(int(raw["days"]))
        if kind == PERFECT_SCORES:
            return PerfectScores(int(raw["count"]))
        if kind == SPEED_BONUSES:
            return SpeedBonuses(int(raw["count"]))
        if kind == COURSES_COMPLETED:
            return CoursesCompleted(int(raw["count"]))
        if kind == COMPLETION_TIME_RANGE:
            return CompletionTimeRange(_parse_clock(raw["start"]), _parse_clock(raw["end"]))
        if kind == TOTAL_POINTS:
            return TotalPoints(int(raw["points"]))
    except (KeyError, TypeError, ValueError):
        return UnknownRequirement(kind=kind or "malformed", raw=dict(raw))
    return UnknownRequirement(kind=kind or "missing", raw=dict(raw))


def dump_requirement(requirement: Requirement) -> dict[str, Any]:
    """Inverse of parse_requirement for storage."""
    if isinstance(requirement, StreakDays):
        return {"kind": STREAK_DAYS, "days": requirement.days}
    if isinstance(requirement, PerfectScores):
        return {"kind": PERFECT_SCORES, "count": requirement.count}
    if isinstance(requirement, SpeedBonuses):
        return {"kind": SPEED_BONUSES, "count": requirement.count}
    if isinstance(requirement, CoursesCompleted):
        return {"kind": COURSES_COMPLETED, "count": requirement.count}
    if isinstance(requirement, CompletionTimeRange):
        return {
            "kind": COMPLETION_TIME_RANGE,
            "start": requirement.start.strftime("%H:%M"),
            "end": requirement.end.strftime("%H:%M"),
        }
    if isinstance(requirement, TotalPoints):
        return {"kind": TOTAL_POINTS, "points": requirement.points}
    return dict(requirement.raw) or {"kind": requirement.kind}


@dataclass(frozen=True)
class AchievementDefinition:
    code: str
    name: str
    description: str
    icon: str
    category: str
    requirement: Requirement
    points_reward: int
    rarity: str
    sort_order: int = 0


# Seeded on startup, idempotent by code.
ACHIEVEMENTS: list[AchievementDefinition] = [
    AchievementDefinition("STREAK_MASTER_7", "Week Warrior", "Maintain a 7-day learning streak",
                          "\U0001f525", "streak", StreakDays(7), 100, "common", 1),
    AchievementDefinition("STREAK_MASTER_30", "Monthly Maven", "Maintain a 30-day learning streak",
                          "\U0001f525", "streak", StreakDays(30), 500, "rare", 2),
    AchievementDefinition("STREAK_MASTER_90", "Quarterly Champion", "Maintain a 90-day learning streak",
                          "\U0001f525", "streak", StreakDays(90), 2000, "epic", 3),
    AchievementDefinition("STREAK_MASTER_365", "Year Legend", "Maintain a 365-day learning streak",
                          "\U0001f525", "streak", StreakDays(365), 10000, "legendary", 4),
    AchievementDefinition("PERFECTIONIST_5", "Perfect Start", "Complete 5 chapters with perfect scores",
                          "\U0001f4af", "perfection", PerfectScores(5), 200, "common", 5),
    AchievementDefinition("PERFECTIONIST_25", "Excellence Seeker", "Complete 25 chapters with perfect scores",
                          "\U0001f4af", "perfection", PerfectScores(25), 1000, "rare", 6),
    AchievementDefinition("PERFECTIONIST_100", "Perfection Master", "Complete 100 chapters with perfect scores",
                          "\U0001f4af", "perfection", PerfectScores(100), 5000, "legendary", 7),
    AchievementDefinition("SPEED_DEMON_10", "Quick Learner", "Complete 10 chapters with speed bonus",
                          "⚡", "speed", SpeedBonuses(10), 150, "common", 8),
    AchievementDefinition("SPEED_DEMON_50", "Lightning Mind", "Complete 50 chapters with speed bonus",
                          "⚡", "speed", SpeedBonuses(50), 800, "rare", 9),
    AchievementDefinition("COURSE_CONQUEROR_1", "First Victory", "Complete your first course",
                          "\U0001f3af", "completion", CoursesCompleted(1), 500, "common", 10),
    AchievementDefinition("COURSE_CONQUEROR_5", "Knowledge Collector", "Complete 5 courses",
                          "\U0001f3af", "completion", CoursesCompleted(5), 2500, "rare", 11),
    AchievementDefinition("COURSE_CONQUEROR_10", "Course Master", "Complete 10 courses",
                          "\U0001f3af", "completion", CoursesCompleted(10), 5000, "epic", 12),
    AchievementDefinition("EARLY_BIRD", "Early Bird", "Complete a chapter before 8 AM",
                          "\U0001f305", "special", CompletionTimeRange(time(0, 0), time(8, 0)), 100, "common", 13),
    AchievementDefinition("NIGHT_OWL", "Night Owl", "Complete a chapter after 10 PM",
                          "\U0001f989", "special", CompletionTimeRange(time(22, 0), time(23, 59)), 100, "common", 14),
    AchievementDefinition("MILESTONE_10K", "10K Club", "Reach 10,000 total points",
                          "\U0001f3c5", "milestone", TotalPoints(10000), 500, "rare", 15),
    AchievementDefinition("MILESTONE_50K", "50K Elite", "Reach 50,000 total points",
                          "\U0001f3c5", "milestone", TotalPoints(50000), 2500, "epic", 16),
    AchievementDefinition("MILESTONE_100K", "100K Legend", "Reach 100,000 total points",
                          "\U0001f3c5", "milestone", TotalPoints(100000), 5000, "legendary", 17),
]


def achievement_item_key(code: str) -> str:
    """Ledger key for an achievement's point reward."""
    return f"achievement:{code}"
