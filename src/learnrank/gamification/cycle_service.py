"""Weekly cycle: demotion evaluation, immunity consumption, weekly snapshot and reset.

This is the only place a user is demoted. Each run claims its ISO week
in weekly_cycle_runs first, so a second invocation in the same week
(or a concurrent one) does nothing. Users are processed one transaction
at a time; a failure is logged and skipped, and that user is picked up
again by next week's run. Before weekly points reset, each user's
standing is kept in weekly_snapshots, ranked by weekly points as they
stood when the cycle started.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone

from learnrank.gamification.leaderboard_service import LeaderboardPeriod, rank_standings
from learnrank.gamification.notifications import RankEventPublisher
from learnrank.gamification.rank_service import RankStateMachine
from learnrank.gamification.repositories import UnitOfWork, UnitOfWorkFactory
from learnrank.gamification.state import RankHistoryEntry, UserRankState, WeeklySnapshot
from learnrank.gamification.streak_service import get_week_iso
from learnrank.gamification.transactions import run_for_user

logger = logging.getLogger(__name__)

MAINTAINED = "maintained"
DEMOTED = "demoted"
IMMUNE = "immune"


@dataclass
class CycleReport:
    period_key: str
    evaluated: int = 0
    demotions: int = 0
    immunity_consumed: int = 0
    maintained: int = 0
    failed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class UserCycleResult:
    outcome: str
    rank_change: RankHistoryEntry | None = None


class WeeklyCycleScheduler:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        rank_machine: RankStateMachine,
        weekly_floors: dict[str, int],
        publisher: RankEventPublisher | None = None,
        max_attempts: int = 3,
    ) -> None:
        self.uow_factory = uow_factory
        self.rank_machine = rank_machine
        self.weekly_floors = weekly_floors
        self.publisher = publisher
        self.max_attempts = max_attempts

    def threshold_for(self, tier_number: int) -> int:
        """Minimum weekly points expected at a tier, by its tier group."""
        group = self.rank_machine.tiers.get(tier_number).tier_group
        return self.weekly_floors.get(group, 0)

    async def run_cycle(self, now: datetime | None = None) -> CycleReport | None:
        """Evaluate every user once for the ISO week containing now.

        Returns None when this week's cycle has already been claimed.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        period_key = get_week_iso(now)

        async with self.uow_factory() as uow:
            claimed = await uow.cycles.try_start(period_key, now)
            await uow.commit()
        if not claimed:
            logger.info("Weekly cycle %s already ran, skipping", period_key)
            return None

        previous_key = get_week_iso(now - timedelta(days=7))
        async with self.uow_factory() as uow:
            user_ids = await uow.ranks.list_user_ids()
            standings = rank_standings(await uow.ranks.list_standings(), LeaderboardPeriod.WEEKLY)
            previous = {s.user_id: s.rank for s in await uow.cycles.list_snapshots(previous_key)}
        positions = {entry["user_id"]: entry["rank"] for entry in standings}

        logger.info("Starting weekly cycle %s for %d users", period_key, len(user_ids))
        report = CycleReport(period_key=period_key)

        for user_id in user_ids:
            # Users created after the standings read rank behind everyone else.
            position = positions.get(user_id, len(positions) + 1)
            try:
                result = await run_for_user(
                    self.uow_factory,
                    user_id,
                    lambda uow, uid=user_id, pos=position: self._process_user(
                        uow, uid, now, period_key, pos, previous.get(uid),
                    ),
                    self.max_attempts,
                )
            except Exception:
                logger.exception("Weekly cycle %s failed for user %s", period_key, user_id)
                report.failed.append(user_id)
                continue

            if result is None:
                continue
            report.evaluated += 1
            if result.outcome == DEMOTED:
                report.demotions += 1
            elif result.outcome == IMMUNE:
                report.immunity_consumed += 1
            else:
                report.maintained += 1

            if result.rank_change is not None and self.publisher is not None:
                await self.publisher.rank_changed(result.rank_change)

        async with self.uow_factory() as uow:
            await uow.cycles.finish(period_key, datetime.now(timezone.utc), report.as_dict())
            await uow.commit()

        logger.info(
            "Weekly cycle %s complete: evaluated=%d demotions=%d immune=%d maintained=%d failed=%d",
            period_key, report.evaluated, report.demotions, report.immunity_consumed,
            report.maintained, len(report.failed),
        )
        return report

    async def _process_user(
        self,
        uow: UnitOfWork,
        user_id: str,
        now: datetime,
        period_key: str,
        position: int,
        previous_position: int | None,
    ) -> UserCycleResult | None:
        state = await uow.ranks.get(user_id, for_update=True)
        if state is None:
            return None
        weekly_points = state.weekly_points
        tier_before = state.current_tier

        result = await self.evaluate_user(uow, state, now)
        await uow.cycles.add_snapshot(WeeklySnapshot(
            period_key=period_key,
            user_id=user_id,
            rank=position,
            weekly_points=weekly_points,
            total_points=state.total_points,
            tier_before=tier_before,
            tier_after=state.current_tier,
            outcome=result.outcome,
            rank_change=position - previous_position if previous_position is not None else None,
            created_at=now,
        ))
        await uow.ranks.save(state)
        return result

    async def evaluate_user(
        self, uow: UnitOfWork, state: UserRankState, now: datetime,
    ) -> UserCycleResult:
        """Apply one cycle to state. The caller saves and commits."""
        threshold = self.threshold_for(state.current_tier)
        weekly = state.weekly_points
        result = UserCycleResult(outcome=MAINTAINED)

        if weekly < threshold and state.current_tier > 1:
            if state.immunity_cycles > 0:
                state.immunity_cycles -= 1
                result.outcome = IMMUNE
                logger.info(
                    "User %s below weekly floor (%d/%d), immunity used, %d left",
                    state.user_id, weekly, threshold, state.immunity_cycles,
                )
            else:
                result.rank_change = await self.rank_machine.demote(
                    uow, state, now, f"Only {weekly} weekly points (floor {threshold})",
                )
                result.outcome = DEMOTED

        state.weekly_points = 0
        state.updated_at = now
        return result
