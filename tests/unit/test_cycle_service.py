"""Weekly cycle tests: demotion floors, immunity, weekly reset and run-once guard."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from learnrank.gamification.state import RankChangeReason
from tests.fakes import NOW


class TestWeeklyEvaluation:
    @pytest.mark.asyncio
    async def test_below_floor_without_immunity_demotes(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=50, current_tier=3, highest_tier=3)

        report = await engine.run_cycle(NOW)

        state = store.ranks["u1"]
        assert state.current_tier == 2
        assert state.demotion_count == 1
        assert state.weekly_points == 0
        assert state.highest_tier == 3
        assert report.demotions == 1
        [entry] = store.history
        assert (entry.old_tier, entry.new_tier, entry.reason) == (3, 2, RankChangeReason.DEMOTION)

    @pytest.mark.asyncio
    async def test_immunity_absorbs_one_cycle(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=50, current_tier=3, immunity_cycles=1)

        report = await engine.run_cycle(NOW)

        state = store.ranks["u1"]
        assert state.current_tier == 3
        assert state.immunity_cycles == 0
        assert state.weekly_points == 0
        assert report.immunity_consumed == 1
        assert store.history == []

    @pytest.mark.asyncio
    async def test_meeting_floor_maintains(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=200, current_tier=3, immunity_cycles=1)

        report = await engine.run_cycle(NOW)

        state = store.ranks["u1"]
        assert state.current_tier == 3
        assert state.immunity_cycles == 1
        assert state.weekly_points == 0
        assert report.maintained == 1

    @pytest.mark.asyncio
    async def test_tier_one_never_demotes_or_spends_immunity(self, engine, store):
        store.add_user("u1", total_points=10, weekly_points=0, current_tier=1, immunity_cycles=2)

        await engine.run_cycle(NOW)

        state = store.ranks["u1"]
        assert state.current_tier == 1
        assert state.immunity_cycles == 2
        assert state.demotion_count == 0

    @pytest.mark.asyncio
    async def test_floor_follows_tier_group(self, engine, store, settings):
        # Tier 4 is intermediate: 250 weekly points clears novice but not intermediate.
        store.add_user("u1", total_points=6000, weekly_points=250, current_tier=4)

        await engine.run_cycle(NOW)

        assert settings.weekly_floor_intermediate == 300
        assert store.ranks["u1"].current_tier == 3

    @pytest.mark.asyncio
    async def test_demotion_is_one_step(self, engine, store):
        store.add_user("u1", total_points=80000, weekly_points=0, current_tier=10)

        await engine.run_cycle(NOW)

        assert store.ranks["u1"].current_tier == 9

    @pytest.mark.asyncio
    async def test_demoted_user_is_repromoted_on_next_credit(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=0, current_tier=3)
        await engine.run_cycle(NOW)
        assert store.ranks["u1"].current_tier == 2

        outcome = await engine.credit("u1", "ch-next", 10)

        assert outcome.current_tier == 3
        assert outcome.rank_changes[0].reason is RankChangeReason.PROMOTION


class TestRunGuard:
    @pytest.mark.asyncio
    async def test_second_run_in_same_week_is_noop(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=50, current_tier=3)

        first = await engine.run_cycle(NOW)
        store.ranks["u1"].weekly_points = 50
        second = await engine.run_cycle(NOW + timedelta(days=2))

        assert first is not None
        assert second is None
        assert store.ranks["u1"].current_tier == 2
        assert store.ranks["u1"].weekly_points == 50

    @pytest.mark.asyncio
    async def test_next_week_runs_again(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=0, current_tier=3)

        await engine.run_cycle(NOW)
        report = await engine.run_cycle(NOW + timedelta(days=7))

        assert report is not None
        assert report.period_key == "2026-W11"
        assert store.ranks["u1"].current_tier == 1

    @pytest.mark.asyncio
    async def test_run_is_recorded(self, engine, store):
        store.add_user("u1", weekly_points=0)

        await engine.run_cycle(NOW)
        last = await engine.last_cycle_run()

        assert last["period_key"] == "2026-W10"
        assert last["status"] == "completed"
        assert last["stats"]["evaluated"] == 1


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failing_user_is_skipped(self, engine, store):
        store.add_user("a", total_points=3000, weekly_points=0, current_tier=3)
        store.add_user("b", total_points=3000, weekly_points=0, current_tier=3)
        store.add_user("c", total_points=3000, weekly_points=0, current_tier=3)
        store.broken_users.add("b")

        report = await engine.run_cycle(NOW)

        assert report.failed == ["b"]
        assert report.demotions == 2
        assert store.ranks["a"].current_tier == 2
        assert store.ranks["b"].current_tier == 3
        assert store.ranks["c"].current_tier == 2

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, engine, store):
        store.add_user("u1", total_points=3000, weekly_points=0, current_tier=3)
        store.conflicts["u1"] = 1

        report = await engine.run_cycle(NOW)

        assert report.failed == []
        assert store.ranks["u1"].current_tier == 2
        assert store.ranks["u1"].demotion_count == 1


class TestCycleSideEffects:
    @pytest.mark.asyncio
    async def test_demotion_published_and_cache_dropped(self, engine, store, redis_mock):
        store.add_user("u1", total_points=3000, weekly_points=0, current_tier=3)
        redis_mock.stored_keys = ["leaderboard:weekly:", "leaderboard:all-time:ada", "session:42"]

        await engine.run_cycle(datetime(2026, 3, 8, 23, 59, tzinfo=timezone.utc))

        channels = [c.args[0] for c in redis_mock.publish.await_args_list]
        assert channels == ["pubsub:rank_change"]
        redis_mock.scan_iter.assert_called_once_with(match="leaderboard:*", count=500)
        redis_mock.delete.assert_awaited_once_with("leaderboard:weekly:", "leaderboard:all-time:ada")


class TestWeeklySnapshots:
    @pytest.mark.asyncio
    async def test_standing_kept_before_reset(self, engine, store):
        store.add_user("bob", total_points=3000, weekly_points=50, current_tier=3)
        store.add_user("amy", total_points=3000, weekly_points=250, current_tier=3)
        store.add_user("cat", total_points=1500, weekly_points=250, current_tier=2)

        await engine.run_cycle(NOW)

        snapshots = {s.user_id: s for s in store.snapshots}
        assert [s.user_id for s in sorted(store.snapshots, key=lambda s: s.rank)] == ["amy", "cat", "bob"]
        bob = snapshots["bob"]
        assert bob.period_key == "2026-W10"
        assert (bob.weekly_points, bob.total_points) == (50, 3000)
        assert (bob.tier_before, bob.tier_after, bob.outcome) == (3, 2, "demoted")
        assert snapshots["amy"].outcome == "maintained"
        assert all(s.rank_change is None for s in store.snapshots)
        assert all(state.weekly_points == 0 for state in store.ranks.values())

    @pytest.mark.asyncio
    async def test_rank_change_against_previous_week(self, engine, store):
        store.add_user("amy", weekly_points=10)
        store.add_user("bob", weekly_points=300)
        await engine.run_cycle(NOW - timedelta(days=7))

        store.ranks["amy"].weekly_points = 300
        store.ranks["bob"].weekly_points = 10
        store.add_user("new", weekly_points=5)
        await engine.run_cycle(NOW)

        week = {s.user_id: s for s in store.snapshots if s.period_key == "2026-W10"}
        assert week["amy"].rank == 1 and week["amy"].rank_change == -1
        assert week["bob"].rank == 2 and week["bob"].rank_change == 1
        assert week["new"].rank_change is None

    @pytest.mark.asyncio
    async def test_failed_user_has_no_snapshot(self, engine, store):
        store.add_user("a", weekly_points=10)
        store.add_user("b", weekly_points=20)
        store.broken_users.add("b")

        await engine.run_cycle(NOW)

        assert [s.user_id for s in store.snapshots] == ["a"]
        assert store.snapshots[0].rank == 2

    @pytest.mark.asyncio
    async def test_weekly_standings_read(self, engine, store):
        for index in range(3):
            store.add_user(f"u{index}", weekly_points=100 * index)
        await engine.run_cycle(NOW)

        page = await engine.weekly_standings("2026-W10", page=1, per_page=2)

        assert page["total"] == 3
        assert [e["user_id"] for e in page["entries"]] == ["u2", "u1"]
        assert page["entries"][0]["weekly_points"] == 200
        assert (await engine.weekly_standings("2026-W09"))["entries"] == []
