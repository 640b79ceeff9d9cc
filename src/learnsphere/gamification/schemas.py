"""Pydantic response models for gamification endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BadgeTierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slug: str
    name: str
    points_required: int
    icon: str | None = None


class AllBadgesResponse(BaseModel):
    badges: list[BadgeTierResponse]


class GamificationSummaryResponse(BaseModel):
    user_id: str
    display_name: str | None = None
    total_points: int
    badge: BadgeTierResponse | None = None
    next_badge: BadgeTierResponse | None = None
    points_to_next: int = 0


class PointsHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: int
    reason_key: str
    source: str
    description: str | None = None
    created_at: datetime | None = None


class PointsHistoryResponse(BaseModel):
    entries: list[PointsHistoryEntry]
    total: int
    page: int
    per_page: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: str | None = None
    total_points: int
    badge: str | None = None
    badge_name: str | None = None


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
