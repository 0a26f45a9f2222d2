"""SQLAlchemy implementations of the gamification repositories.

One AsyncSession backs one SqlUnitOfWork. Rank rows carry a version
column: save() issues UPDATE ... WHERE version = :expected and treats
zero affected rows as a lost race. Unique-constraint violations on the
point ledger and user_achievements mean another worker got there first
and surface as ConcurrentUpdateError too.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learnrank.db.models import (
    AchievementDefinitionRow,
    PointLedger,
    RankHistory,
    User,
    UserAchievement,
    UserRank,
    WeeklyCycleRun,
    WeeklySnapshotRow,
)
from learnrank.exceptions import ConcurrentUpdateError
from learnrank.gamification.achievements import (
    ACHIEVEMENTS,
    AchievementDefinition,
    dump_requirement,
    parse_requirement,
)
from learnrank.gamification.state import (
    RankChangeReason,
    RankHistoryEntry,
    Standing,
    UnlockedAchievement,
    UserRankState,
    WeeklySnapshot,
)

logger = logging.getLogger(__name__)

_STATE_COLUMNS = (
    "total_points",
    "weekly_points",
    "current_tier",
    "highest_tier",
    "streak_days",
    "longest_streak",
    "last_active_date",
    "last_streak_credit_date",
    "promotion_count",
    "demotion_count",
    "immunity_cycles",
    "updated_at",
)


def _to_state(row: UserRank) -> UserRankState:
    return UserRankState(
        user_id=row.user_id,
        total_points=row.total_points,
        weekly_points=row.weekly_points,
        current_tier=row.current_tier,
        highest_tier=row.highest_tier,
        streak_days=row.streak_days,
        longest_streak=row.longest_streak,
        last_active_date=row.last_active_date,
        last_streak_credit_date=row.last_streak_credit_date,
        promotion_count=row.promotion_count,
        demotion_count=row.demotion_count,
        immunity_cycles=row.immunity_cycles,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlUserRankRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str, *, for_update: bool = False) -> UserRankState | None:
        stmt = select(UserRank).where(UserRank.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_state(row) if row is not None else None

    async def create(self, state: UserRankState) -> UserRankState:
        # The users row may not exist yet when the first event arrives.
        await self.session.execute(
            pg_insert(User).values(id=state.user_id).on_conflict_do_nothing(index_elements=["id"])
        )
        values = {column: getattr(state, column) for column in _STATE_COLUMNS}
        stmt = pg_insert(UserRank).values(
            user_id=state.user_id, version=0, created_at=state.created_at, **values,
        ).on_conflict_do_nothing(index_elements=["user_id"])
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentUpdateError(f"Rank row for {state.user_id} already exists")
        state.version = 0
        return state

    async def save(self, state: UserRankState) -> None:
        values = {column: getattr(state, column) for column in _STATE_COLUMNS}
        result = await self.session.execute(
            update(UserRank)
            .where(UserRank.user_id == state.user_id, UserRank.version == state.version)
            .values(version=UserRank.version + 1, **values)
        )
        if result.rowcount == 0:
            raise ConcurrentUpdateError(
                f"Rank row for {state.user_id} changed since version {state.version}"
            )
        state.version += 1

    async def is_credited(self, user_id: str, item_key: str) -> bool:
        result = await self.session.execute(
            select(PointLedger.id).where(
                PointLedger.user_id == user_id, PointLedger.item_key == item_key,
            )
        )
        return result.first() is not None

    async def record_credit(
        self, user_id: str, item_key: str, amount: int, source: str, at: datetime,
    ) -> None:
        self.session.add(PointLedger(
            user_id=user_id, item_key=item_key, amount=amount, source=source, created_at=at,
        ))
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConcurrentUpdateError(f"{item_key} already credited to {user_id}") from e

    async def list_user_ids(self) -> list[str]:
        result = await self.session.execute(select(UserRank.user_id).order_by(UserRank.user_id))
        return list(result.scalars().all())

    async def list_standings(self, search: str | None = None) -> list[Standing]:
        display_name = func.coalesce(User.name, UserRank.user_id)
        stmt = (
            select(
                UserRank.user_id,
                display_name.label("display_name"),
                UserRank.total_points,
                UserRank.weekly_points,
                UserRank.current_tier,
            )
            .join(User, User.id == UserRank.user_id, isouter=True)
        )
        if search:
            stmt = stmt.where(display_name.ilike(f"%{_escape_like(search)}%", escape="\\"))
        result = await self.session.execute(stmt)
        return [
            Standing(
                user_id=row.user_id,
                display_name=row.display_name,
                total_points=row.total_points,
                weekly_points=row.weekly_points,
                current_tier=row.current_tier,
            )
            for row in result.all()
        ]

    async def count_ahead(self, total_points: int, user_id: str) -> int:
        ahead = or_(
            UserRank.total_points > total_points,
            # "C" collation compares code points, like the Python sort of the leaderboard.
            and_(UserRank.total_points == total_points, UserRank.user_id.collate("C") < user_id),
        )
        result = await self.session.execute(select(func.count()).select_from(UserRank).where(ahead))
        return result.scalar_one()

    async def set_display_name(self, user_id: str, display_name: str) -> None:
        stmt = pg_insert(User).values(id=user_id, name=display_name)
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_={"name": stmt.excluded.name})
        await self.session.execute(stmt)


class SqlRankHistoryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, entry: RankHistoryEntry) -> None:
        self.session.add(RankHistory(
            user_id=entry.user_id,
            old_tier=entry.old_tier,
            new_tier=entry.new_tier,
            reason=entry.reason.value,
            points_at_time=entry.points_at_time,
            detail=entry.detail,
            created_at=entry.timestamp,
        ))
        await self.session.flush()

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[RankHistoryEntry]:
        result = await self.session.execute(
            select(RankHistory)
            .where(RankHistory.user_id == user_id)
            .order_by(RankHistory.created_at.desc(), RankHistory.id.desc())
            .limit(limit)
        )
        return [
            RankHistoryEntry(
                user_id=row.user_id,
                old_tier=row.old_tier,
                new_tier=row.new_tier,
                reason=RankChangeReason(row.reason),
                timestamp=row.created_at,
                points_at_time=row.points_at_time,
                detail=row.detail or "",
            )
            for row in result.scalars().all()
        ]


class SqlAchievementRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_definitions(self) -> list[AchievementDefinition]:
        result = await self.session.execute(
            select(AchievementDefinitionRow).order_by(AchievementDefinitionRow.sort_order)
        )
        return [
            AchievementDefinition(
                code=row.code,
                name=row.name,
                description=row.description,
                icon=row.icon,
                category=row.category,
                requirement=parse_requirement(row.requirement),
                points_reward=row.points_reward,
                rarity=row.rarity,
                sort_order=row.sort_order,
            )
            for row in result.scalars().all()
        ]

    async def unlocked(self, user_id: str) -> list[UnlockedAchievement]:
        result = await self.session.execute(
            select(UserAchievement)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.unlocked_at, UserAchievement.id)
        )
        return [UnlockedAchievement(row.code, row.unlocked_at) for row in result.scalars().all()]

    async def add_unlock(self, user_id: str, code: str, at: datetime) -> None:
        self.session.add(UserAchievement(user_id=user_id, code=code, unlocked_at=at))
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConcurrentUpdateError(f"{code} already unlocked for {user_id}") from e


class SqlCycleRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def try_start(self, period_key: str, started_at: datetime) -> bool:
        stmt = pg_insert(WeeklyCycleRun).values(
            period_key=period_key, status="running", started_at=started_at, stats={},
        ).on_conflict_do_nothing(index_elements=["period_key"])
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def finish(self, period_key: str, finished_at: datetime, stats: dict) -> None:
        await self.session.execute(
            update(WeeklyCycleRun)
            .where(WeeklyCycleRun.period_key == period_key)
            .values(status="completed", finished_at=finished_at, stats=stats)
        )

    async def last_run(self) -> dict | None:
        result = await self.session.execute(
            select(WeeklyCycleRun).order_by(WeeklyCycleRun.started_at.desc()).limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return {
            "period_key": row.period_key,
            "status": row.status,
            "started_at": row.started_at,
            "finished_at": row.finished_at,
            "stats": row.stats,
        }

    async def add_snapshot(self, snapshot: WeeklySnapshot) -> None:
        await self.session.execute(
            pg_insert(WeeklySnapshotRow).values(
                period_key=snapshot.period_key,
                user_id=snapshot.user_id,
                rank=snapshot.rank,
                weekly_points=snapshot.weekly_points,
                total_points=snapshot.total_points,
                tier_before=snapshot.tier_before,
                tier_after=snapshot.tier_after,
                outcome=snapshot.outcome,
                rank_change=snapshot.rank_change,
                created_at=snapshot.created_at,
            ).on_conflict_do_nothing(index_elements=["period_key", "user_id"])
        )

    async def list_snapshots(self, period_key: str) -> list[WeeklySnapshot]:
        result = await self.session.execute(
            select(WeeklySnapshotRow)
            .where(WeeklySnapshotRow.period_key == period_key)
            .order_by(WeeklySnapshotRow.rank)
        )
        return [
            WeeklySnapshot(
                period_key=row.period_key,
                user_id=row.user_id,
                rank=row.rank,
                weekly_points=row.weekly_points,
                total_points=row.total_points,
                tier_before=row.tier_before,
                tier_after=row.tier_after,
                outcome=row.outcome,
                rank_change=row.rank_change,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]


class SqlUnitOfWork:
    """One session, one transaction. Rolled back on exit unless committed."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> SqlUnitOfWork:
        self.session = self.session_factory()
        self.ranks = SqlUserRankRepository(self.session)
        self.history = SqlRankHistoryRepository(self.session)
        self.achievements = SqlAchievementRepository(self.session)
        self.cycles = SqlCycleRunRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.rollback()
        finally:
            await self.session.close()  # type: ignore[union-attr]
            self.session = None

    async def commit(self) -> None:
        await self.session.commit()  # type: ignore[union-attr]

    async def rollback(self) -> None:
        await self.session.rollback()  # type: ignore[union-attr]


def sql_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Build a UnitOfWorkFactory over a session factory."""
    return lambda: SqlUnitOfWork(session_factory)


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert the built-in achievement definitions. Returns the number seeded."""
    seeded = 0
    for definition in ACHIEVEMENTS:
        stmt = pg_insert(AchievementDefinitionRow).values(
            code=definition.code,
            name=definition.name,
            description=definition.description,
            icon=definition.icon,
            category=definition.category,
            rarity=definition.rarity,
            points_reward=definition.points_reward,
            requirement=dump_requirement(definition.requirement),
            sort_order=definition.sort_order,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["code"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "category": stmt.excluded.category,
                "rarity": stmt.excluded.rarity,
                "points_reward": stmt.excluded.points_reward,
                "requirement": stmt.excluded.requirement,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
