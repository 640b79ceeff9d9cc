"""Redis client shared by event publishing, pub/sub broadcasts and workers."""

import redis.asyncio as redis

_client: redis.Redis | None = None


def connect(url: str, max_connections: int = 50) -> redis.Redis:
    """Create a decoded-responses client; stream fields come back as str."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str) -> None:
    """Initialize the process-wide Redis client."""
    global _client  # noqa: PLW0603
    _client = connect(url)


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Get the Redis client; raises if init_redis() has not run."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def get_redis_or_none() -> redis.Redis | None:
    """Client for best-effort publishing; None when Redis is not configured."""
    return _client
