"""Hotness score -- 1~5 heat rating from creative variants and days running.

base     = min(collation_count * 10, 100)
duration = +30 (>30d) / +20 (>15d) / +10 (>7d) / 0
score    = clamp(round((base + duration) / 25), 1, 5)
"""

from __future__ import annotations

import math

FLAME = "\U0001F525"

# ── Score weights ──
VARIANT_POINTS = 10
MAX_BASE_SCORE = 100
SCORE_DIVISOR = 25
MIN_SCORE = 1
MAX_SCORE = 5

# (threshold_days, bonus) -- strictly greater than, checked in order
DURATION_BONUSES: tuple[tuple[int, int], ...] = (
    (30, 30),
    (15, 20),
    (7, 10),
)


def _round_half_up(value: float) -> int:
    # Math.round semantics; Python's round() is banker's rounding
    return int(math.floor(value + 0.5))


def duration_bonus(days_running: int) -> int:
    for threshold, bonus in DURATION_BONUSES:
        if days_running > threshold:
            return bonus
    return 0


def calculate_hotness_score(collation_count: int | None, days_running: int | None) -> int:
    """Return the 1~5 hotness score for an ad.

    Inputs are clamped (collation_count >= 1, days_running >= 0) so malformed
    source data still produces a score inside the range.
    """
    variants = max(1, int(collation_count or 1))
    days = max(0, int(days_running or 0))

    base_score = min(variants * VARIANT_POINTS, MAX_BASE_SCORE)
    total_score = base_score + duration_bonus(days)
    return min(max(_round_half_up(total_score / SCORE_DIVISOR), MIN_SCORE), MAX_SCORE)


def flame_emoji(hotness_score) -> str:
    """One flame per score point for 1~5, empty otherwise."""
    if isinstance(hotness_score, bool) or not isinstance(hotness_score, int):
        return ""
    if MIN_SCORE <= hotness_score <= MAX_SCORE:
        return FLAME * hotness_score
    return ""
