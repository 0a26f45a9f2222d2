"""Daily streak tracking with immunity, plus ISO week helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone

from learnrank.gamification.state import UserRankState


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_current_week_iso(now: datetime | None = None) -> str:
    """Get the ISO week string for the current week."""
    if now is None:
        now = datetime.now(timezone.utc)
    return get_week_iso(now)


class StreakTracker:
    """Consecutive-day activity counter.

    touch() compares calendar days, never timestamps:
      same day         -> nothing changes
      next day         -> streak + 1
      gap of 2+ days   -> immunity absorbs it (streak kept, one cycle used),
                          otherwise the streak restarts at 1
      earlier day      -> ignored, so reordered events are harmless
    """

    def touch(self, state: UserRankState, activity_date: date) -> bool:
        """Apply one day of activity. Returns True if the state changed."""
        last = state.last_active_date

        if last is None:
            state.streak_days = 1
            state.last_streak_credit_date = activity_date
        elif activity_date <= last:
            return False
        elif (activity_date - last).days == 1:
            state.streak_days += 1
            state.last_streak_credit_date = activity_date
        elif state.immunity_cycles > 0:
            state.immunity_cycles -= 1
        else:
            state.streak_days = 1
            state.last_streak_credit_date = activity_date

        state.last_active_date = activity_date
        state.longest_streak = max(state.longest_streak, state.streak_days)
        return True

    def effective_streak(self, state: UserRankState, today: date) -> int:
        """Streak as it would read today: 0 once a gap has opened and no immunity remains."""
        if state.last_active_date is None:
            return 0
        gap = (today - state.last_active_date).days
        if gap <= 1 or state.immunity_cycles > 0:
            return state.streak_days
        return 0
