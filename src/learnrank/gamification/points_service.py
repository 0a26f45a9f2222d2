"""Point crediting with per-user idempotency keys."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime

from learnrank.exceptions import ConfigurationError
from learnrank.gamification.rank_service import RankStateMachine
from learnrank.gamification.repositories import UnitOfWork
from learnrank.gamification.state import RankHistoryEntry, UserRankState
from learnrank.gamification.streak_service import StreakTracker

logger = logging.getLogger(__name__)


@dataclass
class CreditResult:
    credited: bool
    amount: int = 0
    rank_change: RankHistoryEntry | None = None
    streak_changed: bool = False


def resolve_amount(amount: float | int | None, item_key: str) -> int:
    """Turn an already-priced amount into whole points, or refuse it.

    Fractional shares (course total / gradable items) round half up.
    """
    if amount is None or isinstance(amount, bool):
        raise ConfigurationError(f"No point amount resolved for {item_key}")
    try:
        value = float(amount)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Point amount for {item_key} is not a number: {amount!r}") from exc
    if not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"Point amount for {item_key} is invalid: {amount!r}")
    return math.floor(value + 0.5)


class PointsAccumulator:
    """Adds points to a user's total and weekly balance, once per item key.

    The point ledger doubles as the dedup set: an item key already in a
    user's ledger makes credit() a no-op, so replays (a revisited chapter,
    a retried request, an achievement evaluated twice) never double-credit.
    """

    def __init__(
        self,
        rank_machine: RankStateMachine,
        streaks: StreakTracker,
        new_user_immunity_cycles: int = 2,
    ) -> None:
        self.rank_machine = rank_machine
        self.streaks = streaks
        self.new_user_immunity_cycles = new_user_immunity_cycles

    async def get_or_create_state(
        self, uow: UnitOfWork, user_id: str, now: datetime,
    ) -> UserRankState:
        """Load the user's rank row for update, creating it on first activity."""
        state = await uow.ranks.get(user_id, for_update=True)
        if state is None:
            state = await uow.ranks.create(UserRankState(
                user_id=user_id,
                immunity_cycles=self.new_user_immunity_cycles,
                created_at=now,
                updated_at=now,
            ))
            logger.info("Created rank state for user %s", user_id)
        return state

    async def credit(
        self,
        uow: UnitOfWork,
        state: UserRankState,
        item_key: str,
        amount: float | int | None,
        *,
        source: str,
        now: datetime,
        activity_date: date | None = None,
    ) -> CreditResult:
        """Credit amount for item_key unless it was credited before.

        On success the rank is re-evaluated in the same unit of work, and
        when activity_date is given the daily streak is touched as well.
        The caller saves state and commits.
        """
        points = resolve_amount(amount, item_key)

        if await uow.ranks.is_credited(state.user_id, item_key):
            logger.debug("Item %s already credited for user %s", item_key, state.user_id)
            return CreditResult(credited=False)

        await uow.ranks.record_credit(state.user_id, item_key, points, source, now)
        state.total_points += points
        state.weekly_points += points
        state.updated_at = now

        rank_change = await self.rank_machine.evaluate(uow, state, now)

        streak_changed = False
        if activity_date is not None:
            streak_changed = self.streaks.touch(state, activity_date)

        return CreditResult(
            credited=True,
            amount=points,
            rank_change=rank_change,
            streak_changed=streak_changed,
        )
