"""Redis client shared by the API process and the gamification worker.

The engine uses Redis three ways: the leaderboard cache, pub/sub
notifications and the activity stream read by the worker.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


def create_redis(url: str, max_connections: int) -> redis.Redis:
    """Build a client that returns str values."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def ensure_consumer_group(client: redis.Redis, stream: str, group: str) -> None:
    """Create the consumer group (and the stream) unless it already exists."""
    try:
        await client.xgroup_create(stream, group, id="0", mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


async def init_redis(url: str, max_connections: int = 50) -> None:
    global _client  # noqa: PLW0603
    _client = create_redis(url, max_connections)


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Return the process client (FastAPI dependency)."""
    if _client is None:
        msg = "Redis client missing: init_redis() has not run"
        raise RuntimeError(msg)
    return _client
