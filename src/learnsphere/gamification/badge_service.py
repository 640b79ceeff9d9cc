"""Badge tier evaluation and change notification."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.db.models import BadgeTier, User
from learnsphere.gamification.badge_catalog import highest_tier

logger = logging.getLogger(__name__)

BADGE_CHANGED_CHANNEL = "pubsub:badge_changed"


async def load_badge_tiers(db: AsyncSession) -> list[BadgeTier]:
    """All tiers, ascending by threshold."""
    result = await db.execute(select(BadgeTier).order_by(BadgeTier.points_required.asc()))
    return list(result.scalars().all())


async def evaluate_badge(db: AsyncSession, redis: object, user_id: str) -> BadgeTier | None:
    """Set the user's badge to the highest tier their current total reaches.

    Tiers can go down as well as up (admin corrections). The badge column is
    only written when the tier actually changes. Returns the resulting tier.
    """
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        logger.error("Cannot evaluate badge: user %s not found", user_id)
        return None

    tiers = await load_badge_tiers(db)
    tier = highest_tier(tiers, user.total_points)
    new_badge_id = tier.id if tier is not None else None

    if new_badge_id == user.current_badge_id:
        return tier

    old_badge_id = user.current_badge_id
    user.current_badge_id = new_badge_id
    user.updated_at = datetime.now(timezone.utc)
    await db.flush()

    by_id = {t.id: t for t in tiers}
    old_tier = by_id.get(old_badge_id) if old_badge_id is not None else None
    logger.info(
        "Badge for %s changed: %s -> %s (%d points)",
        user_id,
        old_tier.slug if old_tier else None,
        tier.slug if tier else None,
        user.total_points,
    )
    await _emit_badge_changed(redis, user_id, old_tier, tier, user.total_points)
    return tier


async def _emit_badge_changed(
    redis: object,
    user_id: str,
    old_tier: BadgeTier | None,
    new_tier: BadgeTier | None,
    total_points: int,
) -> None:
    """Best-effort broadcast; a Redis outage never fails the award."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            BADGE_CHANGED_CHANNEL,
            json.dumps({
                "user_id": user_id,
                "old_badge": old_tier.slug if old_tier else None,
                "new_badge": new_tier.slug if new_tier else None,
                "total_points": total_points,
            }),
        )
    except Exception:
        logger.warning("Failed to publish badge_changed broadcast", exc_info=True)


async def get_user_badge(db: AsyncSession, user_id: str) -> dict | None:
    """Points, current tier and distance to the next tier for a user."""
    result = await db.execute(
        select(User.id, User.display_name, User.total_points, User.current_badge_id)
        .where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        return None

    tiers = await load_badge_tiers(db)
    current = next((t for t in tiers if t.id == row.current_badge_id), None)
    upcoming = next((t for t in tiers if t.points_required > row.total_points), None)

    return {
        "user_id": row.id,
        "display_name": row.display_name,
        "total_points": row.total_points,
        "badge": current,
        "next_badge": upcoming,
        "points_to_next": upcoming.points_required - row.total_points if upcoming else 0,
    }


async def get_leaderboard(db: AsyncSession, limit: int = 50) -> list[dict]:
    """Top learners by total points."""
    result = await db.execute(
        select(User.id, User.display_name, User.total_points, BadgeTier.slug, BadgeTier.name)
        .outerjoin(BadgeTier, BadgeTier.id == User.current_badge_id)
        .where(User.role == "learner")
        .order_by(User.total_points.desc(), User.created_at.asc(), User.id.asc())
        .limit(limit)
    )
    return [
        {
            "rank": i,
            "user_id": row.id,
            "display_name": row.display_name,
            "total_points": row.total_points,
            "badge": row.slug,
            "badge_name": row.name,
        }
        for i, row in enumerate(result.all(), start=1)
    ]
