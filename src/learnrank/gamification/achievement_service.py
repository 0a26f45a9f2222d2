"""Achievement evaluator: unlock each achievement at most once per user."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from learnrank.gamification.achievements import (
    AchievementDefinition,
    AchievementTrigger,
    UnknownRequirement,
    achievement_item_key,
)
from learnrank.gamification.points_service import PointsAccumulator
from learnrank.gamification.repositories import UnitOfWork
from learnrank.gamification.state import RankHistoryEntry, UserRankState

logger = logging.getLogger(__name__)


@dataclass
class Unlock:
    definition: AchievementDefinition
    points_awarded: int
    rank_change: RankHistoryEntry | None = None


class AchievementEvaluator:
    """Tests achievement requirements and awards their points.

    The unlock row and the reward credit are written in the caller's unit
    of work, so they commit or roll back together. Rewards go through the
    accumulator with an "achievement:<code>" item key, which keeps them
    idempotent even if the unlock check were bypassed.
    """

    def __init__(self, accumulator: PointsAccumulator) -> None:
        self.accumulator = accumulator

    async def evaluate(
        self,
        uow: UnitOfWork,
        state: UserRankState,
        trigger: AchievementTrigger,
        now: datetime,
    ) -> list[Unlock]:
        """Unlock every satisfied achievement the user does not have yet.

        Rewards raise total points, which can satisfy a points milestone, so
        one extra pass over total-points requirements follows any rewarded
        unlock. Rewards from that pass do not trigger another.
        """
        definitions = await uow.achievements.list_definitions()
        owned = {u.code for u in await uow.achievements.unlocked(state.user_id)}

        unlocks = await self._pass(uow, state, definitions, owned, trigger, now)
        if any(u.points_awarded > 0 for u in unlocks):
            unlocks += await self._pass(
                uow, state, definitions, owned, AchievementTrigger.points(), now,
            )
        return unlocks

    async def _pass(
        self,
        uow: UnitOfWork,
        state: UserRankState,
        definitions: list[AchievementDefinition],
        owned: set[str],
        trigger: AchievementTrigger,
        now: datetime,
    ) -> list[Unlock]:
        unlocks: list[Unlock] = []

        for definition in definitions:
            if definition.code in owned:
                continue

            requirement = definition.requirement
            if isinstance(requirement, UnknownRequirement):
                logger.warning(
                    "Achievement %s has unrecognized requirement kind %r; treating as locked",
                    definition.code, requirement.kind,
                )
                continue
            if not trigger.wants(requirement.kind):
                continue
            if not requirement.is_met(state, trigger):
                continue

            await uow.achievements.add_unlock(state.user_id, definition.code, now)
            owned.add(definition.code)

            result = await self.accumulator.credit(
                uow, state, achievement_item_key(definition.code), definition.points_reward,
                source="achievement", now=now,
            )
            unlocks.append(Unlock(
                definition=definition,
                points_awarded=result.amount,
                rank_change=result.rank_change,
            ))
            logger.info(
                "User %s unlocked %s (+%d points)",
                state.user_id, definition.code, result.amount,
            )

        return unlocks
