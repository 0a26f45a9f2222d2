"""Publish rank changes and achievement unlocks over Redis pub/sub.

Consumers (the notification subsystem, activity feeds) subscribe to
these channels. Publishing happens after commit and is best effort.
"""

from __future__ import annotations

import json
import logging

from learnrank.gamification.achievements import AchievementDefinition
from learnrank.gamification.rank_tiers import DEFAULT_TIER_TABLE, RankTierTable
from learnrank.gamification.state import RankHistoryEntry

logger = logging.getLogger(__name__)

RANK_CHANGE_CHANNEL = "pubsub:rank_change"
ACHIEVEMENT_CHANNEL = "pubsub:achievement_unlocked"


class RankEventPublisher:
    def __init__(self, redis: object | None, tiers: RankTierTable = DEFAULT_TIER_TABLE) -> None:
        self.redis = redis
        self.tiers = tiers

    async def rank_changed(self, entry: RankHistoryEntry) -> None:
        old = self.tiers.get(entry.old_tier)
        new = self.tiers.get(entry.new_tier)
        await self._publish(RANK_CHANGE_CHANNEL, {
            "user_id": entry.user_id,
            "reason": entry.reason.value,
            "old_tier": entry.old_tier,
            "old_name": old.name,
            "old_icon": old.icon,
            "new_tier": entry.new_tier,
            "new_name": new.name,
            "new_icon": new.icon,
            "points_at_time": entry.points_at_time,
            "timestamp": entry.timestamp.isoformat(),
        })

    async def achievement_unlocked(
        self, user_id: str, definition: AchievementDefinition, points_awarded: int,
    ) -> None:
        await self._publish(ACHIEVEMENT_CHANNEL, {
            "user_id": user_id,
            "code": definition.code,
            "name": definition.name,
            "icon": definition.icon,
            "rarity": definition.rarity,
            "points_reward": points_awarded,
        })

    async def _publish(self, channel: str, payload: dict) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
        except Exception:
            logger.warning("Failed to publish to %s", channel, exc_info=True)
