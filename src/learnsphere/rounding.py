"""Percentage rounding shared by scoring, progress and aggregates.

Scores are shown next to the web client's numbers, which round halves up
(``Math.round``), so Python's banker's rounding is not used here.
"""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +infinity."""
    return math.floor(value + 0.5)


def percent(part: int, whole: int) -> int:
    """``round_half_up(part / whole * 100)``; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)
