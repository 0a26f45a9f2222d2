"""Rank tier table and point-balance lookup.

The table is validated once at import time. A tier table with gaps or
overlaps makes every lookup undefined, so loading it fails loudly.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from learnrank.exceptions import TierTableError

TIER_GROUPS = ("novice", "intermediate", "advanced", "expert", "legendary")


@dataclass(frozen=True)
class RankTier:
    tier_number: int
    name: str
    min_points: int
    max_points: int | None
    tier_group: str
    icon: str = ""
    color: str = ""
    description: str = ""
    estimated_weeks: int | None = None

    def contains(self, points: int) -> bool:
        if points < self.min_points:
            return False
        return self.max_points is None or points < self.max_points


RANK_TIERS: list[RankTier] = [
    RankTier(1, "Knowledge Seeker", 0, 1000, "novice", "\U0001f331", "#10b981",
             "You've taken your first steps into the world of learning.", 2),
    RankTier(2, "Curious Learner", 1000, 2500, "novice", "\U0001f50d", "#3b82f6",
             "Your curiosity drives you forward.", 4),
    RankTier(3, "Dedicated Student", 2500, 5000, "novice", "\U0001f4da", "#6366f1",
             "Consistency is becoming a habit.", 6),
    RankTier(4, "Knowledge Enthusiast", 5000, 10000, "intermediate", "\U0001f4a1", "#8b5cf6",
             "You seek out knowledge with real enthusiasm.", 10),
    RankTier(5, "Diligent Scholar", 10000, 15000, "intermediate", "\U0001f393", "#a855f7",
             "Steady effort is paying off.", 14),
    RankTier(6, "Academic Achiever", 15000, 25000, "intermediate", "\U0001f3c6", "#d946ef",
             "Excellence is your standard.", 20),
    RankTier(7, "Wisdom Seeker", 25000, 40000, "advanced", "\U0001f989", "#ec4899",
             "You look beyond facts for understanding.", 28),
    RankTier(8, "Master Student", 40000, 55000, "advanced", "⭐", "#f43f5e",
             "Few learners reach this level of mastery.", 36),
    RankTier(9, "Knowledge Guardian", 55000, 75000, "advanced", "\U0001f6e1️", "#f97316",
             "Others look to you as an example.", 46),
    RankTier(10, "Enlightened Mind", 75000, 100000, "expert", "\U0001f52e", "#f59e0b",
             "Your learning has become a way of life.", 58),
    RankTier(11, "Academic Luminary", 100000, 150000, "expert", "✨", "#eab308",
             "You light the way for others.", 72),
    RankTier(12, "Wisdom Sage", 150000, 200000, "expert", "\U0001f9d9", "#84cc16",
             "Deep knowledge, calmly held.", 90),
    RankTier(13, "Grand Maestro", 200000, 350000, "legendary", "\U0001f451", "#22c55e",
             "A master among masters.", 120),
    RankTier(14, "Omniscient Scholar", 350000, None, "legendary", "\U0001f31f", "#14b8a6",
             "The pinnacle of achievement.", None),
]


def validate_tiers(tiers: list[RankTier]) -> None:
    """Raise TierTableError unless tiers are dense, contiguous and start at zero."""
    if not tiers:
        raise TierTableError("Rank tier table is empty")
    if tiers[0].min_points != 0:
        raise TierTableError(f"First tier must start at 0 points, got {tiers[0].min_points}")

    for index, tier in enumerate(tiers):
        expected_number = index + 1
        if tier.tier_number != expected_number:
            raise TierTableError(
                f"Tier numbers must be dense from 1: expected {expected_number}, got {tier.tier_number}"
            )
        if tier.tier_group not in TIER_GROUPS:
            raise TierTableError(f"Tier {tier.tier_number} has unknown group {tier.tier_group!r}")

        is_last = index == len(tiers) - 1
        if tier.max_points is None:
            if not is_last:
                raise TierTableError(f"Only the highest tier may be unbounded (tier {tier.tier_number})")
            continue
        if tier.max_points <= tier.min_points:
            raise TierTableError(f"Tier {tier.tier_number} has an empty point range")
        if is_last:
            continue
        following = tiers[index + 1]
        if following.min_points > tier.max_points:
            raise TierTableError(f"Gap between tier {tier.tier_number} and tier {following.tier_number}")
        if following.min_points < tier.max_points:
            raise TierTableError(f"Tier {tier.tier_number} overlaps tier {following.tier_number}")


class RankTierTable:
    """Validated, ordered tier table with O(log n) point lookup."""

    def __init__(self, tiers: list[RankTier]) -> None:
        validate_tiers(tiers)
        self._tiers = list(tiers)
        self._floors = [t.min_points for t in self._tiers]

    def __len__(self) -> int:
        return len(self._tiers)

    def __iter__(self):
        return iter(self._tiers)

    @property
    def top(self) -> RankTier:
        return self._tiers[-1]

    def get(self, tier_number: int) -> RankTier:
        """Return the tier with the given number, clamped into the table."""
        index = min(max(tier_number, 1), len(self._tiers)) - 1
        return self._tiers[index]

    def next_tier(self, tier_number: int) -> RankTier | None:
        if tier_number >= len(self._tiers):
            return None
        return self._tiers[tier_number]

    def tier_for_points(self, points: int) -> RankTier:
        """Return the tier whose [min_points, max_points) contains points.

        Boundaries are inclusive on min_points, so a balance exactly at a
        tier's floor belongs to that tier. Negative balances map to tier 1.
        """
        index = bisect_right(self._floors, points) - 1
        return self._tiers[max(index, 0)]

    def progress(self, tier_number: int, total_points: int) -> float:
        """Fraction (0.0-1.0) of the way from tier_number to the next tier."""
        current = self.get(tier_number)
        following = self.next_tier(current.tier_number)
        if following is None:
            return 1.0
        span = following.min_points - current.min_points
        into = total_points - current.min_points
        return round(min(max(into / span, 0.0), 1.0), 4)


DEFAULT_TIER_TABLE = RankTierTable(RANK_TIERS)
