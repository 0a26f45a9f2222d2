"""Rank state machine: promotion on point gain, one-step demotion, admin moves."""

from __future__ import annotations

import logging
from datetime import datetime

from learnrank.gamification.rank_tiers import DEFAULT_TIER_TABLE, RankTierTable
from learnrank.gamification.repositories import UnitOfWork
from learnrank.gamification.state import RankChangeReason, RankHistoryEntry, UserRankState

logger = logging.getLogger(__name__)


class RankStateMachine:
    """Moves a user's current tier and writes the rank history.

    Promotions happen here in real time and may skip tiers. A target tier
    below the current one is ignored: total points never fall during normal
    activity, so demotion is driven by weekly activity in the cycle
    scheduler instead.
    """

    def __init__(self, tiers: RankTierTable = DEFAULT_TIER_TABLE) -> None:
        self.tiers = tiers

    async def evaluate(
        self, uow: UnitOfWork, state: UserRankState, now: datetime,
    ) -> RankHistoryEntry | None:
        """Promote state to the tier its total points map to, if higher."""
        target = self.tiers.tier_for_points(state.total_points)
        if target.tier_number <= state.current_tier:
            return None

        entry = await self._move(
            uow, state, target.tier_number, RankChangeReason.PROMOTION, now,
            f"Reached {state.total_points} points",
        )
        state.promotion_count += 1
        logger.info(
            "User %s promoted %d -> %d (%s)",
            state.user_id, entry.old_tier, entry.new_tier, target.name,
        )
        return entry

    async def demote(
        self, uow: UnitOfWork, state: UserRankState, now: datetime, detail: str = "",
    ) -> RankHistoryEntry | None:
        """Drop exactly one tier. No-op at tier 1."""
        if state.current_tier <= 1:
            return None
        entry = await self._move(
            uow, state, state.current_tier - 1, RankChangeReason.DEMOTION, now, detail,
        )
        state.demotion_count += 1
        logger.info("User %s demoted %d -> %d", state.user_id, entry.old_tier, entry.new_tier)
        return entry

    async def adjust(
        self,
        uow: UnitOfWork,
        state: UserRankState,
        total_points: int,
        now: datetime,
        detail: str = "",
    ) -> RankHistoryEntry | None:
        """Admin correction: set the balance and snap the tier to it in either direction."""
        state.total_points = total_points
        target = self.tiers.tier_for_points(total_points)
        if target.tier_number == state.current_tier:
            return None
        entry = await self._move(
            uow, state, target.tier_number, RankChangeReason.ADMIN_ADJUSTMENT, now,
            detail or f"Balance corrected to {total_points} points",
        )
        logger.warning(
            "Admin adjustment for user %s: tier %d -> %d at %d points",
            state.user_id, entry.old_tier, entry.new_tier, total_points,
        )
        return entry

    async def _move(
        self,
        uow: UnitOfWork,
        state: UserRankState,
        new_tier: int,
        reason: RankChangeReason,
        now: datetime,
        detail: str,
    ) -> RankHistoryEntry:
        entry = RankHistoryEntry(
            user_id=state.user_id,
            old_tier=state.current_tier,
            new_tier=new_tier,
            reason=reason,
            timestamp=now,
            points_at_time=state.total_points,
            detail=detail,
        )
        state.current_tier = new_tier
        state.highest_tier = max(state.highest_tier, new_tier)
        state.updated_at = now
        await uow.history.append(entry)
        return entry
