"""ORM models for the gamification engine.

The users table belongs to the auth subsystem; it is mapped here only
for display names and foreign keys, with extend_existing=True.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from learnrank.db.base import Base


class User(Base):
    """Maps to the auth subsystem's 'users' table."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="ACTIVE")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserRank(Base):
    """Denormalized rank state: a single row per user guarded by a version counter."""

    __tablename__ = "user_ranks"
    __table_args__ = (
        Index("ix_user_ranks_total_points", "total_points"),
        Index("ix_user_ranks_weekly_points", "weekly_points"),
        {"extend_existing": True},
    )

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    weekly_points: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    current_tier: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    highest_tier: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_streak_credit_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    promotion_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    demotion_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    immunity_cycles: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class PointLedger(Base):
    """Immutable point transaction log; UNIQUE(user_id, item_key) is the dedup set."""

    __tablename__ = "point_ledger"
    __table_args__ = (
        UniqueConstraint("user_id", "item_key", name="point_ledger_user_id_item_key_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    item_key: Mapped[str] = mapped_column(String(256), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RankHistory(Base):
    """Append-only record of tier changes."""

    __tablename__ = "rank_history"
    __table_args__ = (
        Index("ix_rank_history_user_id_created_at", "user_id", "created_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    old_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    new_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    points_at_time: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AchievementDefinitionRow(Base):
    """Achievement definitions, seeded on startup and upserted by code."""

    __tablename__ = "achievement_definitions"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(String(16), nullable=False, server_default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    requirement: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")


class UserAchievement(Base):
    """Achievements unlocked by users. UNIQUE(user_id, code) prevents duplicates."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "code", name="user_achievements_user_id_code_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(64), ForeignKey("achievement_definitions.code"), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class WeeklyCycleRun(Base):
    """One row per weekly cycle; the unique period key is the run-once guard."""

    __tablename__ = "weekly_cycle_runs"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    period_key: Mapped[str] = mapped_column(String(10), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stats: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")


class WeeklySnapshotRow(Base):
    """Per-user weekly standing written by the cycle before weekly points reset."""

    __tablename__ = "weekly_snapshots"
    __table_args__ = (
        UniqueConstraint("period_key", "user_id", name="weekly_snapshots_period_key_user_id_key"),
        Index("ix_weekly_snapshots_period_key_rank", "period_key", "rank"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    period_key: Mapped[str] = mapped_column(
        String(10), ForeignKey("weekly_cycle_runs.period_key", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tier_before: Mapped[int] = mapped_column(Integer, nullable=False)
    tier_after: Mapped[int] = mapped_column(Integer, nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    rank_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
