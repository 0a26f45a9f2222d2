"""Leaderboard tests: total ordering, search-before-rank, pagination and caching."""

from __future__ import annotations

import json

import pytest

from learnrank.gamification.leaderboard_service import (
    LeaderboardAggregator,
    LeaderboardPeriod,
    build_leaderboard_key,
    filter_standings,
    rank_standings,
)
from learnrank.gamification.state import Standing


def _standing(user_id: str, total: int, weekly: int = 0, name: str | None = None) -> Standing:
    return Standing(user_id=user_id, display_name=name or user_id, total_points=total, weekly_points=weekly)


class TestRankStandings:
    def test_points_descending(self):
        ranked = rank_standings([_standing("a", 10), _standing("b", 30), _standing("c", 20)], LeaderboardPeriod.ALL_TIME)
        assert [e["user_id"] for e in ranked] == ["b", "c", "a"]
        assert [e["rank"] for e in ranked] == [1, 2, 3]

    def test_ties_broken_by_user_id(self):
        ranked = rank_standings([_standing("zed", 50), _standing("amy", 50), _standing("max", 50)], LeaderboardPeriod.ALL_TIME)
        assert [e["user_id"] for e in ranked] == ["amy", "max", "zed"]
        assert [e["rank"] for e in ranked] == [1, 2, 3]

    def test_weekly_period_uses_weekly_points(self):
        ranked = rank_standings([_standing("a", 1000, weekly=5), _standing("b", 10, weekly=90)], LeaderboardPeriod.WEEKLY)
        assert [e["user_id"] for e in ranked] == ["b", "a"]
        assert ranked[0]["points"] == 90

    def test_empty(self):
        assert rank_standings([], LeaderboardPeriod.WEEKLY) == []


class TestSearch:
    def test_case_insensitive_substring(self):
        standings = [_standing("1", 0, name="Alice"), _standing("2", 0, name="MALIK"), _standing("3", 0, name="Bob")]
        assert [s.user_id for s in filter_standings(standings, "ali")] == ["1", "2"]

    def test_blank_search_keeps_all(self):
        standings = [_standing("1", 0), _standing("2", 0)]
        assert filter_standings(standings, "  ") == standings

    def test_cache_key_normalizes_search(self):
        assert build_leaderboard_key(LeaderboardPeriod.WEEKLY, "  Ali ") == "leaderboard:weekly:ali"
        assert build_leaderboard_key(LeaderboardPeriod.ALL_TIME) == "leaderboard:all-time:"


class TestQuery:
    @pytest.fixture(autouse=True)
    def _users(self, store):
        store.add_user("u1", "Alice", total_points=500, weekly_points=50)
        store.add_user("u2", "Bob", total_points=900, weekly_points=10)
        store.add_user("u3", "Alina", total_points=700, weekly_points=80)
        store.add_user("u4", "Carol", total_points=700, weekly_points=0)

    @pytest.mark.asyncio
    async def test_all_time_page(self, engine):
        board = await engine.query_leaderboard(LeaderboardPeriod.ALL_TIME, page=1, per_page=2)
        assert [e["user_id"] for e in board["entries"]] == ["u2", "u3"]
        assert board["total"] == 4

        page_two = await engine.query_leaderboard(LeaderboardPeriod.ALL_TIME, page=2, per_page=2)
        assert [(e["rank"], e["user_id"]) for e in page_two["entries"]] == [(3, "u4"), (4, "u1")]

    @pytest.mark.asyncio
    async def test_search_filters_before_ranking(self, engine):
        board = await engine.query_leaderboard(LeaderboardPeriod.ALL_TIME, search="ali")
        assert [(e["rank"], e["display_name"]) for e in board["entries"]] == [(1, "Alina"), (2, "Alice")]

    @pytest.mark.asyncio
    async def test_requesting_user_entry_outside_page(self, engine):
        board = await engine.query_leaderboard(
            LeaderboardPeriod.WEEKLY, page=1, per_page=1, requesting_user_id="u2",
        )
        assert [e["user_id"] for e in board["entries"]] == ["u3"]
        assert board["current_user"]["rank"] == 3
        assert board["current_user"]["points"] == 10

    @pytest.mark.asyncio
    async def test_unknown_requesting_user(self, engine):
        board = await engine.query_leaderboard(requesting_user_id="ghost")
        assert board["current_user"] is None

    @pytest.mark.asyncio
    async def test_per_page_is_capped(self, engine, settings):
        board = await engine.query_leaderboard(per_page=10_000)
        assert board["per_page"] == settings.leaderboard_max_per_page


class TestCache:
    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, uow_factory, store, redis_mock):
        store.add_user("u1", total_points=5)
        aggregator = LeaderboardAggregator(redis_mock, cache_ttl_seconds=30)

        async with uow_factory() as uow:
            await aggregator.query(uow, LeaderboardPeriod.ALL_TIME)

        key, payload = redis_mock.set.await_args.args
        assert key == "leaderboard:all-time:"
        assert redis_mock.set.await_args.kwargs == {"ex": 30}
        assert json.loads(payload)[0]["user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_hit_skips_storage(self, uow_factory, store, redis_mock):
        cached = [{"rank": 1, "user_id": "cached", "display_name": "Cached", "points": 1,
                   "total_points": 1, "weekly_points": 0, "current_tier": 1}]
        redis_mock.get.return_value = json.dumps(cached)
        store.add_user("u1", total_points=5)
        aggregator = LeaderboardAggregator(redis_mock)

        async with uow_factory() as uow:
            board = await aggregator.query(uow, LeaderboardPeriod.ALL_TIME)

        assert [e["user_id"] for e in board["entries"]] == ["cached"]
        redis_mock.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_storage(self, uow_factory, store, redis_mock):
        redis_mock.get.side_effect = ConnectionError("redis down")
        redis_mock.set.side_effect = ConnectionError("redis down")
        store.add_user("u1", total_points=5)
        aggregator = LeaderboardAggregator(redis_mock)

        async with uow_factory() as uow:
            board = await aggregator.query(uow, LeaderboardPeriod.ALL_TIME)

        assert [e["user_id"] for e in board["entries"]] == ["u1"]
