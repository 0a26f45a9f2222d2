"""Optimistic retry loop around a single user's unit of work."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from learnrank.exceptions import ConcurrentUpdateError, ContentionError
from learnrank.gamification.repositories import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_for_user(
    uow_factory: UnitOfWorkFactory,
    user_id: str,
    work: Callable[[UnitOfWork], Awaitable[T]],
    max_attempts: int = 3,
) -> T:
    """Run work in a fresh unit of work and commit, retrying on version conflicts.

    work must be safe to re-run from scratch: every attempt starts from a
    clean transaction and re-reads the user's state. After max_attempts
    conflicts ContentionError is raised; the update is never dropped silently.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            async with uow_factory() as uow:
                result = await work(uow)
                await uow.commit()
                return result
        except ConcurrentUpdateError:
            logger.info(
                "Concurrent update for user %s (attempt %d/%d), retrying",
                user_id, attempt, max_attempts,
            )
    logger.error("Contention on user %s not resolved after %d attempts", user_id, max_attempts)
    raise ContentionError(user_id, max_attempts)
