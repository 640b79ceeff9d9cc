"""Badge tiers and tier computation.

Thresholds match the web client's BADGE_LEVELS.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

BADGE_TIERS: list[dict] = [
    {"slug": "newbie", "name": "Newbie", "points_required": 20, "icon": "\U0001f331", "sort_order": 1},
    {"slug": "explorer", "name": "Explorer", "points_required": 40, "icon": "\U0001f50d", "sort_order": 2},
    {"slug": "achiever", "name": "Achiever", "points_required": 60, "icon": "\U0001f3c6", "sort_order": 3},
    {"slug": "specialist", "name": "Specialist", "points_required": 80, "icon": "⭐", "sort_order": 4},
    {"slug": "expert", "name": "Expert", "points_required": 100, "icon": "\U0001f48e", "sort_order": 5},
    {"slug": "master", "name": "Master", "points_required": 120, "icon": "\U0001f451", "sort_order": 6},
]


class _Tier(Protocol):
    points_required: int


def validate_catalog(tiers: Sequence[dict[str, Any]]) -> None:
    """Thresholds must be strictly ascending (and therefore unique)."""
    thresholds = [t["points_required"] for t in tiers]
    for prev, cur in zip(thresholds, thresholds[1:]):
        if cur <= prev:
            msg = f"Badge thresholds must be strictly ascending: {thresholds}"
            raise ValueError(msg)


validate_catalog(BADGE_TIERS)


def highest_tier(tiers: Sequence[_Tier], points: int) -> _Tier | None:
    """Return the highest tier whose threshold is <= points.

    ``tiers`` must be sorted ascending by ``points_required``. Returns None
    when the user is below the first threshold.
    """
    for tier in reversed(tiers):
        if tier.points_required <= points:
            return tier
    return None
