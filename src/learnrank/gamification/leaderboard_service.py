"""Leaderboard aggregation over all-time and weekly point totals.

Rankings are computed from the rank rows and cached in Redis for a short
TTL; a stale leaderboard is acceptable, a wrong order is not. The order is
total: points descending, then user_id ascending.
"""

from __future__ import annotations

import json
import logging
from enum import Enum

from learnrank.gamification.repositories import UnitOfWork
from learnrank.gamification.state import Standing

logger = logging.getLogger(__name__)


class LeaderboardPeriod(str, Enum):
    ALL_TIME = "all-time"
    WEEKLY = "weekly"


def build_leaderboard_key(period: LeaderboardPeriod, search: str | None = None) -> str:
    """Build the Redis cache key for a ranked list."""
    needle = (search or "").strip().casefold()
    return f"leaderboard:{period.value}:{needle}"


def rank_standings(standings: list[Standing], period: LeaderboardPeriod) -> list[dict]:
    """Sort standings into ranked entries. Rank numbers are 1-based and unique."""

    def score(s: Standing) -> int:
        return s.total_points if period is LeaderboardPeriod.ALL_TIME else s.weekly_points

    ordered = sorted(standings, key=lambda s: (-score(s), s.user_id))
    return [
        {
            "rank": position,
            "user_id": s.user_id,
            "display_name": s.display_name,
            "points": score(s),
            "total_points": s.total_points,
            "weekly_points": s.weekly_points,
            "current_tier": s.current_tier,
        }
        for position, s in enumerate(ordered, start=1)
    ]


def filter_standings(standings: list[Standing], search: str | None) -> list[Standing]:
    """Case-insensitive display name substring filter."""
    needle = (search or "").strip().casefold()
    if not needle:
        return standings
    return [s for s in standings if needle in (s.display_name or "").casefold()]


class LeaderboardAggregator:
    """Read-only ranked views with search and pagination."""

    def __init__(self, redis: object | None = None, cache_ttl_seconds: int = 30) -> None:
        self.redis = redis
        self.cache_ttl_seconds = cache_ttl_seconds

    async def query(
        self,
        uow: UnitOfWork,
        period: LeaderboardPeriod,
        search: str | None = None,
        page: int = 1,
        per_page: int = 50,
        requesting_user_id: str | None = None,
    ) -> dict:
        """One page of the ranked list plus the requester's own entry.

        The search filter applies before ranking, so ranks are positions
        within the filtered set.
        """
        page = max(page, 1)
        per_page = max(per_page, 1)

        ranked = await self._ranked(uow, period, search)
        start = (page - 1) * per_page
        entries = ranked[start:start + per_page]

        current_user = None
        if requesting_user_id is not None:
            current_user = next(
                (e for e in ranked if e["user_id"] == requesting_user_id), None,
            )

        return {
            "period": period.value,
            "search": search or "",
            "entries": entries,
            "total": len(ranked),
            "page": page,
            "per_page": per_page,
            "current_user": current_user,
        }

    async def _ranked(
        self, uow: UnitOfWork, period: LeaderboardPeriod, search: str | None,
    ) -> list[dict]:
        key = build_leaderboard_key(period, search)
        cached = await self._cache_get(key)
        if cached is not None:
            return cached

        needle = (search or "").strip() or None
        standings = filter_standings(await uow.ranks.list_standings(needle), needle)
        ranked = rank_standings(standings, period)
        await self._cache_set(key, ranked)
        return ranked

    async def invalidate(self) -> None:
        """Drop every cached ranked list (used after the weekly reset)."""
        if self.redis is None:
            return
        try:
            keys = [key async for key in self.redis.scan_iter(match="leaderboard:*", count=500)]  # type: ignore[union-attr]
            if keys:
                await self.redis.delete(*keys)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Failed to invalidate leaderboard cache", exc_info=True)

    async def _cache_get(self, key: str) -> list[dict] | None:
        if self.redis is None or self.cache_ttl_seconds <= 0:
            return None
        try:
            raw = await self.redis.get(key)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Leaderboard cache read failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def _cache_set(self, key: str, ranked: list[dict]) -> None:
        if self.redis is None or self.cache_ttl_seconds <= 0:
            return
        try:
            await self.redis.set(key, json.dumps(ranked), ex=self.cache_ttl_seconds)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Leaderboard cache write failed for %s", key, exc_info=True)
