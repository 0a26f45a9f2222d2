"""Standalone runner for the activity stream consumer.

Reads learning events from the Redis stream the course-progress
subsystem writes to and feeds them to the engine. Crediting is
idempotent per item key, so redelivered messages are harmless.

A message is acknowledged once the engine has applied it, or once it is
known it never can be (malformed or unpriced). Any other failure leaves
it pending; reclaim_pending() hands it back to the engine after
activity_reclaim_idle_ms, which also recovers messages from consumers
that died mid-batch.

Usage: python -m learnrank.workers.activity_runner
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import time

import redis.asyncio as aioredis
from pydantic import ValidationError

from learnrank.config import Settings, get_settings
from learnrank.database import close_db, get_session_factory, init_db
from learnrank.db.repositories import sql_uow_factory
from learnrank.exceptions import ConfigurationError
from learnrank.gamification.engine import GamificationEngine
from learnrank.gamification.schemas import ActivityEvent
from learnrank.middleware.logging import setup_logging
from learnrank.redis_client import create_redis, ensure_consumer_group

logger = logging.getLogger(__name__)


def decode_event(raw_data: dict) -> ActivityEvent:
    """Build an ActivityEvent from a stream message. Raises ValidationError."""
    data_str = raw_data.get("data")
    if isinstance(data_str, str):
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            data = dict(raw_data)
    else:
        data = dict(raw_data)
    return ActivityEvent.model_validate(data)


async def process_message(engine: GamificationEngine, msg_id: str, raw_data: dict) -> None:
    """Apply one stream message. Returning normally means it may be acknowledged.

    Malformed events and unpriced amounts can never succeed, so they are
    dropped with a warning. Anything else propagates.
    """
    try:
        event = decode_event(raw_data)
    except ValidationError as e:
        logger.warning("Dropping malformed activity event %s: %s", msg_id, e)
        return

    try:
        outcome = await engine.record_activity(event)
    except ConfigurationError as e:
        logger.warning("Dropping activity event %s: %s", msg_id, e)
        return

    if outcome.credited:
        logger.info(
            "Credited %d points to %s for %s (tier=%d, unlocked=%s)",
            outcome.points_awarded, outcome.user_id, outcome.item_key,
            outcome.current_tier, outcome.unlocked,
        )


async def handle_message(
    redis_client: aioredis.Redis,
    engine: GamificationEngine,
    stream: str,
    group: str,
    msg_id: str,
    raw_data: dict,
) -> bool:
    """Process and acknowledge one message. False leaves it pending."""
    try:
        await process_message(engine, msg_id, raw_data)
        await redis_client.xack(stream, group, msg_id)
    except Exception:
        logger.exception("Failed to process %s from %s, left pending", msg_id, stream)
        return False
    return True


async def reclaim_pending(
    redis_client: aioredis.Redis, engine: GamificationEngine, settings: Settings,
) -> int:
    """Claim and retry messages idle in the pending list. Returns how many succeeded."""
    stream = settings.activity_stream
    group = settings.activity_consumer_group
    start_id = "0-0"
    handled = 0

    while True:
        reply = await redis_client.xautoclaim(
            stream,
            group,
            settings.activity_consumer_name,
            min_idle_time=settings.activity_reclaim_idle_ms,
            start_id=start_id,
            count=100,
        )
        start_id, messages = reply[0], reply[1]

        for msg_id, raw_data in messages:
            if raw_data is None:
                # Trimmed from the stream while pending; nothing left to apply.
                await redis_client.xack(stream, group, msg_id)
                continue
            if await handle_message(redis_client, engine, stream, group, msg_id, raw_data):
                handled += 1

        if start_id in ("0-0", b"0-0"):
            break

    if handled:
        logger.info("Reclaimed %d pending activity events", handled)
    return handled


async def consume(
    redis_client: aioredis.Redis,
    engine: GamificationEngine,
    settings: Settings,
    stop: asyncio.Event,
) -> None:
    """Main consumer loop: new messages, plus a periodic pass over pending ones."""
    group = settings.activity_consumer_group
    streams = {settings.activity_stream: ">"}
    next_reclaim = 0.0

    while not stop.is_set():
        try:
            if time.monotonic() >= next_reclaim:
                await reclaim_pending(redis_client, engine, settings)
                next_reclaim = time.monotonic() + settings.activity_reclaim_interval_seconds

            events = await redis_client.xreadgroup(
                groupname=group,
                consumername=settings.activity_consumer_name,
                streams=streams,
                count=100,
                block=5000,
            )
        except aioredis.ResponseError as e:
            logger.error("Activity stream error: %s", e)
            await asyncio.sleep(1)
            continue

        for stream_name, messages in events or []:
            stream_str = stream_name if isinstance(stream_name, str) else stream_name.decode()
            for msg_id, raw_data in messages:
                await handle_message(redis_client, engine, stream_str, group, msg_id, raw_data)


async def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)

    redis_client = create_redis(settings.redis_url, max_connections=20)
    await ensure_consumer_group(redis_client, settings.activity_stream, settings.activity_consumer_group)
    engine = GamificationEngine(
        sql_uow_factory(get_session_factory()), settings=settings, redis=redis_client,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "Starting activity consumer (stream=%s, consumer=%s)",
        settings.activity_stream, settings.activity_consumer_name,
    )
    try:
        await consume(redis_client, engine, settings, stop)
    finally:
        await redis_client.aclose()
        await close_db()
        logger.info("Activity consumer stopped")


if __name__ == "__main__":
    asyncio.run(main())
