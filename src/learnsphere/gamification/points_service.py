"""Points ledger with idempotent awards.

Every change to a user's ``total_points`` goes through a ``points_ledger``
row keyed by ``(user_id, reason_key)``, so the denormalized total is always
the sum of the ledger and a replayed award is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.db.models import PointsLedger, User
from learnsphere.errors import NotFoundError
from learnsphere.gamification.badge_service import evaluate_badge

logger = logging.getLogger(__name__)


async def get_total_points(db: AsyncSession, user_id: str) -> int | None:
    """Read the stored total straight from the row (bypasses the identity map)."""
    return await db.scalar(select(User.total_points).where(User.id == user_id))


async def _already_awarded(db: AsyncSession, user_id: str, reason_key: str) -> bool:
    existing = await db.scalar(
        select(PointsLedger.id).where(
            PointsLedger.user_id == user_id,
            PointsLedger.reason_key == reason_key,
        )
    )
    return existing is not None


async def award_points(
    db: AsyncSession,
    redis: object,
    user_id: str,
    amount: int,
    reason_key: str,
    *,
    source: str,
    description: str | None = None,
) -> bool:
    """Award points to a user. Returns True if awarded, False if duplicate.

    1. Skip if the (user, reason_key) ledger row already exists
    2. Insert the ledger row and increment users.total_points in SQL,
       inside a savepoint
    3. Re-evaluate the badge tier

    A concurrent writer can still insert the same reason between the check
    and the insert; the unique violation then only rolls back the savepoint
    and counts as a duplicate. The caller owns the transaction; nothing is
    committed here.
    """
    if amount < 0:
        msg = f"Point awards must be non-negative, got {amount}"
        raise ValueError(msg)

    exists = await db.scalar(select(User.id).where(User.id == user_id))
    if exists is None:
        logger.error("Cannot award %d points for %s: user %s not found", amount, reason_key, user_id)
        return False

    if await _already_awarded(db, user_id, reason_key):
        return False

    if not await _apply(db, user_id, amount, reason_key, source, description):
        return False
    await evaluate_badge(db, redis, user_id)
    logger.info("Awarded %d points to %s (%s)", amount, user_id, reason_key)
    return True


async def _apply(
    db: AsyncSession,
    user_id: str,
    amount: int,
    reason_key: str,
    source: str,
    description: str | None,
) -> bool:
    """Write the ledger row and bump the total. False on a unique violation."""
    now = datetime.now(timezone.utc)
    try:
        async with db.begin_nested():
            db.add(PointsLedger(
                user_id=user_id,
                amount=amount,
                reason_key=reason_key,
                source=source,
                description=description,
                created_at=now,
            ))
            await db.flush()

            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(total_points=User.total_points + amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
    except IntegrityError:
        logger.info("Points for %s already awarded to %s", reason_key, user_id)
        return False
    return True


async def apply_admin_correction(
    db: AsyncSession,
    redis: object,
    user_id: str,
    delta: int,
    reason_key: str,
    description: str | None = None,
) -> int:
    """Apply a signed manual correction. Returns the amount actually applied.

    Totals never go below zero, so a negative delta is clamped to the
    user's current total. The ledger records the clamped amount.
    """
    current = await get_total_points(db, user_id)
    if current is None:
        msg = f"User {user_id} not found"
        raise NotFoundError(msg)

    applied = max(delta, -current)
    if await _already_awarded(db, user_id, reason_key):
        return 0

    if not await _apply(db, user_id, applied, reason_key, "admin", description):
        return 0
    await evaluate_badge(db, redis, user_id)
    logger.info("Admin correction of %d points for %s (%s)", applied, user_id, reason_key)
    return applied


async def ledger_total(db: AsyncSession, user_id: str) -> int:
    """Sum of all ledger entries for a user."""
    total = await db.scalar(
        select(func.coalesce(func.sum(PointsLedger.amount), 0)).where(
            PointsLedger.user_id == user_id
        )
    )
    return int(total or 0)


async def reconcile_user_points(db: AsyncSession, redis: object, user_id: str) -> bool:
    """Reset total_points to the ledger sum. Returns True if it drifted."""
    stored = await get_total_points(db, user_id)
    if stored is None:
        return False

    expected = await ledger_total(db, user_id)
    if stored == expected:
        return False

    logger.warning("Points drift for %s: stored=%d ledger=%d", user_id, stored, expected)
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_points=expected, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await evaluate_badge(db, redis, user_id)
    return True


async def get_points_history(
    db: AsyncSession,
    user_id: str,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[PointsLedger], int]:
    """Paginated ledger entries, newest first."""
    total = await db.scalar(
        select(func.count()).select_from(PointsLedger).where(PointsLedger.user_id == user_id)
    )

    offset = (page - 1) * per_page
    result = await db.execute(
        select(PointsLedger)
        .where(PointsLedger.user_id == user_id)
        .order_by(PointsLedger.created_at.desc(), PointsLedger.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total or 0


async def reconcile_all_user_points(db: AsyncSession, redis: object) -> int:
    """Repair every user whose total drifted from the ledger. Returns the count."""
    user_ids = (await db.execute(select(User.id).order_by(User.id))).scalars().all()
    repaired = 0
    for user_id in user_ids:
        if await reconcile_user_points(db, redis, user_id):
            repaired += 1
        await db.commit()

    logger.info("Points reconciliation: %d of %d users repaired", repaired, len(user_ids))
    return repaired
