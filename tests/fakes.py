"""In-memory unit of work for engine tests.

Writes are buffered per unit of work and applied on commit, so a unit
of work that raises leaves the store untouched. Version checks and the
uniqueness guards behave like the SQL implementation.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from learnrank.exceptions import ConcurrentUpdateError
from learnrank.gamification.achievements import ACHIEVEMENTS, AchievementDefinition
from learnrank.gamification.state import (
    RankHistoryEntry,
    Standing,
    UnlockedAchievement,
    UserRankState,
    WeeklySnapshot,
)

NOW = datetime(2026, 3, 4, 12, 0, 0, tzinfo=timezone.utc)  # Wednesday, 2026-W10


class InMemoryStore:
    def __init__(self, definitions: list[AchievementDefinition] | None = None) -> None:
        self.ranks: dict[str, UserRankState] = {}
        self.names: dict[str, str] = {}
        self.ledger: dict[tuple[str, str], dict] = {}
        self.history: list[RankHistoryEntry] = []
        self.definitions = list(ACHIEVEMENTS if definitions is None else definitions)
        self.unlocks: dict[str, list[UnlockedAchievement]] = {}
        self.cycle_runs: dict[str, dict] = {}
        self.snapshots: list[WeeklySnapshot] = []
        # Fault injection: saves to reject per user, users whose load fails.
        self.conflicts: dict[str, int] = {}
        self.broken_users: set[str] = set()
        self.commits = 0

    def add_user(self, user_id: str, display_name: str | None = None, **fields) -> UserRankState:
        """Seed a committed rank row."""
        state = UserRankState(user_id=user_id, **fields)
        self.ranks[user_id] = state
        if display_name:
            self.names[user_id] = display_name
        return replace(state)

    def credited_keys(self, user_id: str) -> set[str]:
        return {key for uid, key in self.ledger if uid == user_id}


class FakeRankRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self.uow = uow
        self.store = uow.store

    async def get(self, user_id: str, *, for_update: bool = False) -> UserRankState | None:
        if user_id in self.store.broken_users:
            raise RuntimeError(f"storage failure for {user_id}")
        if user_id in self.uow.states:
            return replace(self.uow.states[user_id])
        state = self.store.ranks.get(user_id)
        return replace(state) if state is not None else None

    async def create(self, state: UserRankState) -> UserRankState:
        if state.user_id in self.store.ranks or state.user_id in self.uow.states:
            raise ConcurrentUpdateError(f"Rank row for {state.user_id} already exists")
        state.version = 0
        self.uow.expected.setdefault(state.user_id, None)
        self.uow.states[state.user_id] = replace(state)
        return state

    async def save(self, state: UserRankState) -> None:
        user_id = state.user_id
        if self.store.conflicts.get(user_id, 0) > 0:
            self.store.conflicts[user_id] -= 1
            raise ConcurrentUpdateError(f"Injected conflict for {user_id}")

        current = self.uow.states.get(user_id) or self.store.ranks.get(user_id)
        if current is None or current.version != state.version:
            raise ConcurrentUpdateError(f"Rank row for {user_id} changed since version {state.version}")
        if user_id not in self.uow.expected:
            self.uow.expected[user_id] = current.version
        state.version += 1
        self.uow.states[user_id] = replace(state)

    async def is_credited(self, user_id: str, item_key: str) -> bool:
        return (user_id, item_key) in self.store.ledger or (user_id, item_key) in self.uow.ledger

    async def record_credit(
        self, user_id: str, item_key: str, amount: int, source: str, at: datetime,
    ) -> None:
        if await self.is_credited(user_id, item_key):
            raise ConcurrentUpdateError(f"{item_key} already credited to {user_id}")
        self.uow.ledger[(user_id, item_key)] = {"amount": amount, "source": source, "created_at": at}

    async def list_user_ids(self) -> list[str]:
        return sorted(self.store.ranks)

    async def list_standings(self, search: str | None = None) -> list[Standing]:
        standings = []
        for user_id, state in self.store.ranks.items():
            name = self.store.names.get(user_id, user_id)
            if search and search.casefold() not in name.casefold():
                continue
            standings.append(Standing(
                user_id=user_id,
                display_name=name,
                total_points=state.total_points,
                weekly_points=state.weekly_points,
                current_tier=state.current_tier,
            ))
        return standings

    async def count_ahead(self, total_points: int, user_id: str) -> int:
        return sum(
            1 for s in self.store.ranks.values()
            if (-s.total_points, s.user_id) < (-total_points, user_id)
        )

    async def set_display_name(self, user_id: str, display_name: str) -> None:
        self.uow.names[user_id] = display_name


class FakeHistoryRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self.uow = uow
        self.store = uow.store

    async def append(self, entry: RankHistoryEntry) -> None:
        self.uow.history_entries.append(entry)

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[RankHistoryEntry]:
        entries = [e for e in self.store.history + self.uow.history_entries if e.user_id == user_id]
        ordered = sorted(enumerate(entries), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [e for _, e in ordered][:limit]


class FakeAchievementRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self.uow = uow
        self.store = uow.store

    async def list_definitions(self) -> list[AchievementDefinition]:
        return sorted(self.store.definitions, key=lambda d: d.sort_order)

    async def unlocked(self, user_id: str) -> list[UnlockedAchievement]:
        pending = [u for uid, u in self.uow.unlocks if uid == user_id]
        return list(self.store.unlocks.get(user_id, [])) + pending

    async def add_unlock(self, user_id: str, code: str, at: datetime) -> None:
        if any(u.code == code for u in await self.unlocked(user_id)):
            raise ConcurrentUpdateError(f"{code} already unlocked for {user_id}")
        self.uow.unlocks.append((user_id, UnlockedAchievement(code, at)))


class FakeCycleRunRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self.uow = uow
        self.store = uow.store

    async def try_start(self, period_key: str, started_at: datetime) -> bool:
        if period_key in self.store.cycle_runs or period_key in self.uow.cycle_runs:
            return False
        self.uow.cycle_runs[period_key] = {
            "period_key": period_key,
            "status": "running",
            "started_at": started_at,
            "finished_at": None,
            "stats": {},
        }
        return True

    async def finish(self, period_key: str, finished_at: datetime, stats: dict) -> None:
        run = dict(self.uow.cycle_runs.get(period_key) or self.store.cycle_runs[period_key])
        run.update(status="completed", finished_at=finished_at, stats=stats)
        self.uow.cycle_runs[period_key] = run

    async def last_run(self) -> dict | None:
        runs = list(self.store.cycle_runs.values())
        if not runs:
            return None
        return max(runs, key=lambda r: r["started_at"])

    async def add_snapshot(self, snapshot: WeeklySnapshot) -> None:
        self.uow.snapshots.append(snapshot)

    async def list_snapshots(self, period_key: str) -> list[WeeklySnapshot]:
        snapshots = [s for s in self.store.snapshots + self.uow.snapshots if s.period_key == period_key]
        return sorted(snapshots, key=lambda s: s.rank)


class InMemoryUnitOfWork:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._clear()
        self.ranks = FakeRankRepository(self)
        self.history = FakeHistoryRepository(self)
        self.achievements = FakeAchievementRepository(self)
        self.cycles = FakeCycleRunRepository(self)

    async def __aenter__(self) -> InMemoryUnitOfWork:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    async def commit(self) -> None:
        for user_id, expected in self.expected.items():
            committed = self.store.ranks.get(user_id)
            committed_version = committed.version if committed is not None else None
            if committed_version != expected:
                raise ConcurrentUpdateError(f"Rank row for {user_id} changed before commit")
        for key in self.ledger:
            if key in self.store.ledger:
                raise ConcurrentUpdateError(f"{key[1]} already credited to {key[0]}")

        self.store.ranks.update({uid: replace(s) for uid, s in self.states.items()})
        self.store.ledger.update(self.ledger)
        self.store.history.extend(self.history_entries)
        for user_id, unlock in self.unlocks:
            self.store.unlocks.setdefault(user_id, []).append(unlock)
        self.store.names.update(self.names)
        self.store.cycle_runs.update(self.cycle_runs)
        self.store.snapshots.extend(self.snapshots)
        self.store.commits += 1
        self._clear()

    async def rollback(self) -> None:
        self._clear()

    def _clear(self) -> None:
        self.states = {}
        self.expected = {}
        self.ledger = {}
        self.history_entries = []
        self.unlocks = []
        self.names = {}
        self.cycle_runs = {}
        self.snapshots = []


class InMemoryUnitOfWorkFactory:
    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store or InMemoryStore()
        self.opened = 0

    def __call__(self) -> InMemoryUnitOfWork:
        self.opened += 1
        return InMemoryUnitOfWork(self.store)
