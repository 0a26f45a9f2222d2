"""Domain exceptions raised by the gamification engine."""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for engine errors."""


class ConfigurationError(GamificationError):
    """Point amount or seed configuration cannot be resolved."""


class TierTableError(ConfigurationError):
    """Rank tier table has gaps, overlaps or ordering problems."""


class ConcurrentUpdateError(GamificationError):
    """A user's rank row changed underneath the current unit of work."""


class ContentionError(GamificationError):
    """Retries for a single user's update were exhausted."""

    def __init__(self, user_id: str, attempts: int) -> None:
        super().__init__(f"Gave up updating user {user_id} after {attempts} attempts")
        self.user_id = user_id
        self.attempts = attempts


class UserRankNotFoundError(GamificationError):
    """No rank state exists for the user yet."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"No rank state for user {user_id}")
        self.user_id = user_id
