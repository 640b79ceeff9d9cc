"""Gamification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from learnsphere.config import get_settings
from learnsphere.dependencies import get_db
from learnsphere.errors import NotFoundError
from learnsphere.gamification.badge_service import get_leaderboard, get_user_badge, load_badge_tiers
from learnsphere.gamification.points_service import get_points_history
from learnsphere.gamification.schemas import (
    AllBadgesResponse,
    BadgeTierResponse,
    GamificationSummaryResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    PointsHistoryEntry,
    PointsHistoryResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_db)):
    """All badge tiers, lowest threshold first."""
    tiers = await load_badge_tiers(db)
    return AllBadgesResponse(badges=[BadgeTierResponse.model_validate(t) for t in tiers])


@router.get("/users/{user_id}/gamification", response_model=GamificationSummaryResponse)
async def get_gamification_summary(user_id: str, db: AsyncSession = Depends(get_db)):
    """Points, badge and distance to the next badge."""
    summary = await get_user_badge(db, user_id)
    if summary is None:
        raise NotFoundError(f"User {user_id} not found")

    return GamificationSummaryResponse(
        user_id=summary["user_id"],
        display_name=summary["display_name"],
        total_points=summary["total_points"],
        badge=BadgeTierResponse.model_validate(summary["badge"]) if summary["badge"] else None,
        next_badge=(
            BadgeTierResponse.model_validate(summary["next_badge"]) if summary["next_badge"] else None
        ),
        points_to_next=summary["points_to_next"],
    )


@router.get("/users/{user_id}/points/history", response_model=PointsHistoryResponse)
async def get_user_points_history(
    user_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Points ledger history (paginated)."""
    entries, total = await get_points_history(db, user_id, page=page, per_page=per_page)
    return PointsHistoryResponse(
        entries=[PointsHistoryEntry.model_validate(e) for e in entries],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Top learners by total points."""
    rows = await get_leaderboard(db, limit=limit or get_settings().leaderboard_size)
    return LeaderboardResponse(entries=[LeaderboardEntry(**r) for r in rows])
