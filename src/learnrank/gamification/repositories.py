"""Storage interfaces the engine depends on.

Every engine operation runs inside one UnitOfWork: the three
repositories it exposes share a transaction, and commit() makes the
whole event visible at once. Implementations raise
ConcurrentUpdateError when an optimistic version check or a uniqueness
guard fails, so the caller can retry the event from scratch.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from learnrank.gamification.achievements import AchievementDefinition
from learnrank.gamification.state import (
    RankHistoryEntry,
    Standing,
    UnlockedAchievement,
    UserRankState,
    WeeklySnapshot,
)


class UserRankRepository(Protocol):
    async def get(self, user_id: str, *, for_update: bool = False) -> UserRankState | None: ...

    async def create(self, state: UserRankState) -> UserRankState:
        """Insert a new row. Raises ConcurrentUpdateError if it already exists."""
        ...

    async def save(self, state: UserRankState) -> None:
        """Persist state if its version is still current, then bump the version."""
        ...

    async def is_credited(self, user_id: str, item_key: str) -> bool: ...

    async def record_credit(
        self, user_id: str, item_key: str, amount: int, source: str, at: datetime,
    ) -> None:
        """Append to the point ledger. Raises ConcurrentUpdateError on a duplicate key."""
        ...

    async def list_user_ids(self) -> list[str]: ...

    async def list_standings(self, search: str | None = None) -> list[Standing]:
        """All users with a rank row, optionally filtered by display name substring."""
        ...

    async def count_ahead(self, total_points: int, user_id: str) -> int:
        """Users ranked above (total_points, user_id) in all-time leaderboard order."""
        ...

    async def set_display_name(self, user_id: str, display_name: str) -> None: ...


class RankHistoryRepository(Protocol):
    async def append(self, entry: RankHistoryEntry) -> None: ...

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[RankHistoryEntry]: ...


class AchievementRepository(Protocol):
    async def list_definitions(self) -> list[AchievementDefinition]: ...

    async def unlocked(self, user_id: str) -> list[UnlockedAchievement]:
        """Unlocks in the order they happened."""
        ...

    async def add_unlock(self, user_id: str, code: str, at: datetime) -> None:
        """Raises ConcurrentUpdateError if the code is already unlocked for the user."""
        ...


class CycleRunRepository(Protocol):
    async def try_start(self, period_key: str, started_at: datetime) -> bool:
        """Claim the period. False when it was already claimed."""
        ...

    async def finish(self, period_key: str, finished_at: datetime, stats: dict) -> None: ...

    async def last_run(self) -> dict | None: ...

    async def add_snapshot(self, snapshot: WeeklySnapshot) -> None: ...

    async def list_snapshots(self, period_key: str) -> list[WeeklySnapshot]:
        """Snapshots of one week, best rank first."""
        ...


class UnitOfWork(Protocol):
    ranks: UserRankRepository
    history: RankHistoryRepository
    achievements: AchievementRepository
    cycles: CycleRunRepository

    async def __aenter__(self) -> UnitOfWork: ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class UnitOfWorkFactory(Protocol):
    def __call__(self) -> UnitOfWork: ...
