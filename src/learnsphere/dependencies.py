"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException

from learnsphere.database import get_session as _get_session
from learnsphere.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when not configured) for event publishing."""
    yield get_redis_or_none()


async def get_actor_id(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user id, supplied by the gateway in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
