"""Redis Streams publisher for progression events.

Publishes each event to ``lms:{event_type}`` with XADD, capped by an
approximate MAXLEN. Publishing is fire-and-forget from the writer's point of
view: the write has already committed, so a Redis failure is logged and the
nightly reconciliation repairs any derived state that missed the event.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis

from learnsphere.config import get_settings
from learnsphere.events.schemas import DomainEvent

logger = logging.getLogger(__name__)


async def publish_event(redis: aioredis.Redis | None, event: DomainEvent) -> str | None:
    """XADD the event to its stream. Returns the entry id, or None on failure."""
    if redis is None:
        logger.warning("Redis not connected, dropping %s event", event.event.value)
        return None

    fields = {
        "event": event.event.value,
        "ts": str(event.ts),
        "data": json.dumps(event.data),
    }
    try:
        entry_id = await redis.xadd(
            event.stream,
            fields,
            maxlen=get_settings().event_stream_maxlen,
            approximate=True,
        )
    except aioredis.RedisError:
        logger.exception("Failed to publish to Redis stream %s", event.stream)
        return None

    return entry_id


async def publish_events(redis: aioredis.Redis | None, events: list[DomainEvent]) -> int:
    """Publish several events; returns how many were accepted."""
    published = 0
    for event in events:
        if await publish_event(redis, event) is not None:
            published += 1
    return published
