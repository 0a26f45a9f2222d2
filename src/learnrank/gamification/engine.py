"""Gamification engine: wires the components and owns transactions.

Each public operation runs as one unit of work per user, retried on
optimistic-concurrency conflicts. Notifications are published only
after the unit of work commits.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date, datetime, timezone

from learnrank.config import Settings, get_settings
from learnrank.exceptions import UserRankNotFoundError
from learnrank.gamification.achievement_service import AchievementEvaluator, Unlock
from learnrank.gamification.achievements import AchievementDefinition, AchievementTrigger, dump_requirement
from learnrank.gamification.cycle_service import CycleReport, WeeklyCycleScheduler
from learnrank.gamification.leaderboard_service import LeaderboardAggregator, LeaderboardPeriod
from learnrank.gamification.notifications import RankEventPublisher
from learnrank.gamification.points_service import CreditResult, PointsAccumulator
from learnrank.gamification.rank_service import RankStateMachine
from learnrank.gamification.rank_tiers import DEFAULT_TIER_TABLE, RankTier, RankTierTable
from learnrank.gamification.repositories import UnitOfWork, UnitOfWorkFactory
from learnrank.gamification.schemas import ActivityEvent
from learnrank.gamification.state import ActivityOutcome, RankHistoryEntry, UserRankState, WeeklySnapshot
from learnrank.gamification.streak_service import StreakTracker
from learnrank.gamification.transactions import run_for_user

logger = logging.getLogger(__name__)


def tier_payload(tier: RankTier) -> dict:
    return asdict(tier)


def achievement_payload(definition: AchievementDefinition) -> dict:
    return {
        "code": definition.code,
        "name": definition.name,
        "description": definition.description,
        "icon": definition.icon,
        "category": definition.category,
        "rarity": definition.rarity,
        "points_reward": definition.points_reward,
        "requirement": dump_requirement(definition.requirement),
    }


def history_payload(entry: RankHistoryEntry) -> dict:
    return {
        "old_tier": entry.old_tier,
        "new_tier": entry.new_tier,
        "reason": entry.reason.value,
        "timestamp": entry.timestamp,
        "points_at_time": entry.points_at_time,
        "detail": entry.detail,
    }


def snapshot_payload(snapshot: WeeklySnapshot) -> dict:
    payload = asdict(snapshot)
    del payload["period_key"]
    return payload


class GamificationEngine:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        settings: Settings | None = None,
        tiers: RankTierTable = DEFAULT_TIER_TABLE,
        redis: object | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.uow_factory = uow_factory
        self.tiers = tiers
        self.publisher = RankEventPublisher(redis, tiers)

        self.rank_machine = RankStateMachine(tiers)
        self.streaks = StreakTracker()
        self.accumulator = PointsAccumulator(
            self.rank_machine, self.streaks, self.settings.new_user_immunity_cycles,
        )
        self.achievements = AchievementEvaluator(self.accumulator)
        self.leaderboard = LeaderboardAggregator(redis, self.settings.leaderboard_cache_ttl_seconds)
        self.cycle = WeeklyCycleScheduler(
            uow_factory,
            self.rank_machine,
            self.settings.weekly_floors(),
            publisher=self.publisher,
            max_attempts=self.settings.contention_max_retries,
        )

    # -- writes --

    async def record_activity(self, event: ActivityEvent) -> ActivityOutcome:
        """Credit a learning event, then update rank, streak and achievements."""
        now = datetime.now(timezone.utc)
        trigger = AchievementTrigger(
            perfect_score_count=event.perfect_score_count,
            speed_bonus_count=event.speed_bonus_count,
            courses_completed=event.courses_completed,
            completed_at=event.occurred_at,
        )

        async def work(uow: UnitOfWork) -> ActivityOutcome:
            state = await self.accumulator.get_or_create_state(uow, event.user_id, now)
            if event.display_name:
                await uow.ranks.set_display_name(event.user_id, event.display_name)

            credit = await self.accumulator.credit(
                uow, state, event.item_key, event.points_eligible,
                source=event.kind.value, now=now, activity_date=event.occurred_at.date(),
            )
            unlocks: list[Unlock] = []
            if credit.credited:
                unlocks = await self.achievements.evaluate(uow, state, trigger, now)
            await uow.ranks.save(state)
            return self._outcome(state, event.item_key, credit, unlocks)

        outcome = await run_for_user(
            self.uow_factory, event.user_id, work, self.settings.contention_max_retries,
        )
        await self._publish(outcome)
        return outcome

    async def credit(
        self, user_id: str, item_key: str, amount: float | int | None, *, source: str = "manual",
    ) -> ActivityOutcome:
        """Credit points for an item key outside the activity flow (no streak touch)."""
        now = datetime.now(timezone.utc)

        async def work(uow: UnitOfWork) -> ActivityOutcome:
            state = await self.accumulator.get_or_create_state(uow, user_id, now)
            credit = await self.accumulator.credit(uow, state, item_key, amount, source=source, now=now)
            unlocks: list[Unlock] = []
            if credit.credited:
                unlocks = await self.achievements.evaluate(uow, state, AchievementTrigger.points(), now)
            await uow.ranks.save(state)
            return self._outcome(state, item_key, credit, unlocks)

        outcome = await run_for_user(self.uow_factory, user_id, work, self.settings.contention_max_retries)
        await self._publish(outcome)
        return outcome

    async def touch(self, user_id: str, activity_date: date) -> ActivityOutcome:
        """Record a day of activity for the streak without crediting points."""
        now = datetime.now(timezone.utc)

        async def work(uow: UnitOfWork) -> ActivityOutcome:
            state = await self.accumulator.get_or_create_state(uow, user_id, now)
            unlocks: list[Unlock] = []
            if self.streaks.touch(state, activity_date):
                state.updated_at = now
                unlocks = await self.achievements.evaluate(uow, state, AchievementTrigger.streak(), now)
            await uow.ranks.save(state)
            return self._outcome(state, "", CreditResult(credited=False), unlocks)

        outcome = await run_for_user(self.uow_factory, user_id, work, self.settings.contention_max_retries)
        await self._publish(outcome)
        return outcome

    async def evaluate_rank(self, user_id: str) -> RankHistoryEntry | None:
        now = datetime.now(timezone.utc)

        async def work(uow: UnitOfWork) -> RankHistoryEntry | None:
            state = await self._require_state(uow, user_id, for_update=True)
            entry = await self.rank_machine.evaluate(uow, state, now)
            await uow.ranks.save(state)
            return entry

        entry = await run_for_user(self.uow_factory, user_id, work, self.settings.contention_max_retries)
        if entry is not None:
            await self.publisher.rank_changed(entry)
        return entry

    async def evaluate_achievements(
        self, user_id: str, trigger: AchievementTrigger | None = None,
    ) -> list[str]:
        now = datetime.now(timezone.utc)
        trigger = trigger or AchievementTrigger()

        async def work(uow: UnitOfWork) -> ActivityOutcome:
            state = await self._require_state(uow, user_id, for_update=True)
            unlocks = await self.achievements.evaluate(uow, state, trigger, now)
            await uow.ranks.save(state)
            return self._outcome(state, "", CreditResult(credited=False), unlocks)

        outcome = await run_for_user(self.uow_factory, user_id, work, self.settings.contention_max_retries)
        await self._publish(outcome)
        return outcome.unlocked

    async def adjust_points(self, user_id: str, total_points: int, detail: str = "") -> ActivityOutcome:
        """Admin correction of a user's total; the only path that may lower it."""
        now = datetime.now(timezone.utc)

        async def work(uow: UnitOfWork) -> ActivityOutcome:
            state = await self._require_state(uow, user_id, for_update=True)
            entry = await self.rank_machine.adjust(uow, state, total_points, now, detail)
            state.updated_at = now
            await uow.ranks.save(state)
            outcome = self._outcome(state, "", CreditResult(credited=False), [])
            if entry is not None:
                outcome.rank_changes.append(entry)
            return outcome

        outcome = await run_for_user(self.uow_factory, user_id, work, self.settings.contention_max_retries)
        await self._publish(outcome)
        return outcome

    async def run_cycle(self, now: datetime | None = None) -> CycleReport | None:
        report = await self.cycle.run_cycle(now)
        if report is not None:
            await self.leaderboard.invalidate()
        return report

    # -- reads --

    async def list_achievements(self) -> list[dict]:
        async with self.uow_factory() as uow:
            definitions = await uow.achievements.list_definitions()
        return [achievement_payload(d) for d in definitions]

    async def last_cycle_run(self) -> dict | None:
        async with self.uow_factory() as uow:
            return await uow.cycles.last_run()

    async def weekly_standings(self, period_key: str, page: int = 1, per_page: int | None = None) -> dict:
        """A closed week's standings, as snapshotted by the cycle."""
        page = max(page, 1)
        per_page = min(per_page or self.settings.leaderboard_per_page, self.settings.leaderboard_max_per_page)
        async with self.uow_factory() as uow:
            snapshots = await uow.cycles.list_snapshots(period_key)
        start = (page - 1) * per_page
        return {
            "period_key": period_key,
            "entries": [snapshot_payload(s) for s in snapshots[start:start + per_page]],
            "total": len(snapshots),
            "page": page,
            "per_page": per_page,
        }

    async def query_leaderboard(
        self,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
        search: str | None = None,
        page: int = 1,
        per_page: int | None = None,
        requesting_user_id: str | None = None,
    ) -> dict:
        per_page = min(per_page or self.settings.leaderboard_per_page, self.settings.leaderboard_max_per_page)
        async with self.uow_factory() as uow:
            return await self.leaderboard.query(
                uow, period, search, page, per_page, requesting_user_id,
            )

    async def get_history(self, user_id: str, limit: int | None = None) -> list[dict]:
        async with self.uow_factory() as uow:
            entries = await uow.history.list_for_user(user_id, limit or self.settings.rank_history_limit)
        return [history_payload(e) for e in entries]

    async def get_profile(self, user_id: str, today: date | None = None) -> dict:
        """Everything a profile page shows about a user's rank."""
        today = today or datetime.now(timezone.utc).date()
        async with self.uow_factory() as uow:
            state = await self._require_state(uow, user_id)
            ahead = await uow.ranks.count_ahead(state.total_points, state.user_id)
            history = await uow.history.list_for_user(user_id, self.settings.rank_history_limit)
            unlocked = await uow.achievements.unlocked(user_id)
            definitions = {d.code: d for d in await uow.achievements.list_definitions()}

        tier = self.tiers.get(state.current_tier)
        following = self.tiers.next_tier(tier.tier_number)
        progress = self.tiers.progress(tier.tier_number, state.total_points)

        achievements = []
        for item in unlocked:
            definition = definitions.get(item.code)
            if definition is None:
                continue
            achievements.append({
                "code": definition.code,
                "name": definition.name,
                "icon": definition.icon,
                "rarity": definition.rarity,
                "points_reward": definition.points_reward,
                "unlocked_at": item.unlocked_at,
            })

        return {
            "user_id": state.user_id,
            "total_points": state.total_points,
            "weekly_points": state.weekly_points,
            "tier": tier_payload(tier),
            "next_tier": tier_payload(following) if following else None,
            "progress": progress,
            "progress_percentage": round(progress * 100),
            "highest_tier": state.highest_tier,
            "streak_days": state.streak_days,
            "effective_streak": self.streaks.effective_streak(state, today),
            "longest_streak": state.longest_streak,
            "last_active_date": state.last_active_date,
            "immunity_cycles": state.immunity_cycles,
            "promotion_count": state.promotion_count,
            "demotion_count": state.demotion_count,
            "leaderboard_position": ahead + 1,
            "history": [history_payload(e) for e in history],
            "achievements": achievements,
        }

    # -- helpers --

    async def _require_state(
        self, uow: UnitOfWork, user_id: str, *, for_update: bool = False,
    ) -> UserRankState:
        state = await uow.ranks.get(user_id, for_update=for_update)
        if state is None:
            raise UserRankNotFoundError(user_id)
        return state

    def _outcome(
        self, state: UserRankState, item_key: str, credit: CreditResult, unlocks: list[Unlock],
    ) -> ActivityOutcome:
        rank_changes = [credit.rank_change] if credit.rank_change else []
        rank_changes += [u.rank_change for u in unlocks if u.rank_change]
        return ActivityOutcome(
            user_id=state.user_id,
            item_key=item_key,
            credited=credit.credited,
            points_awarded=credit.amount + sum(u.points_awarded for u in unlocks),
            total_points=state.total_points,
            weekly_points=state.weekly_points,
            current_tier=state.current_tier,
            streak_days=state.streak_days,
            rank_changes=rank_changes,
            unlocked=[u.definition.code for u in unlocks],
        )

    async def _publish(self, outcome: ActivityOutcome) -> None:
        for entry in outcome.rank_changes:
            await self.publisher.rank_changed(entry)
        if not outcome.unlocked:
            return
        async with self.uow_factory() as uow:
            definitions = {d.code: d for d in await uow.achievements.list_definitions()}
        for code in outcome.unlocked:
            definition = definitions.get(code)
            if definition is not None:
                await self.publisher.achievement_unlocked(outcome.user_id, definition, definition.points_reward)
