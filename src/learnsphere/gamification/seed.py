"""Idempotent upsert of the badge catalog into badge_tiers."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.database import dialect_insert
from learnsphere.db.models import BadgeTier
from learnsphere.gamification.badge_catalog import BADGE_TIERS

logger = logging.getLogger(__name__)


async def seed_badge_tiers(db: AsyncSession) -> int:
    """Upsert all badge tiers. Returns number of tiers seeded."""
    insert = dialect_insert(db)

    seeded = 0
    for tier_data in BADGE_TIERS:
        stmt = insert(BadgeTier).values(**tier_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "points_required": stmt.excluded.points_required,
                "icon": stmt.excluded.icon,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge tiers", seeded)
    return seeded
