"""Score range and tier vocabularies."""

from __future__ import annotations

import math

MIN_SCORE = 300
MAX_SCORE = 950

RISK_WATCH = "Risk Watch"

# (threshold, label), highest first
BASIC_TIERS: tuple[tuple[int, str], ...] = (
    (850, "AAA"),
    (800, "AA"),
    (750, "A"),
    (700, "BBB"),
    (650, "BB"),
)

ENHANCED_TIERS: tuple[tuple[int, str], ...] = (
    (900, "AAA - Elite"),
    (850, "AA - Exceptional"),
    (800, "A+ - Excellent"),
    (750, "A - Very Good"),
    (700, "A- - Good"),
    (650, "BBB+ - Above Average"),
    (600, "BBB - Average"),
    (550, "BBB- - Fair"),
    (500, "BB - Below Average"),
    (450, "B - Poor"),
    (400, "C - High Risk"),
)
ENHANCED_FLOOR_TIER = "D - Risk Watch"


def round_half_up(value: float) -> int:
    """Round halves up, the way scores are published."""
    return math.floor(value + 0.5)


def clamp_score(value: float) -> int:
    """Clamp to [MIN_SCORE, MAX_SCORE], then round half up."""
    return round_half_up(max(MIN_SCORE, min(MAX_SCORE, value)))


def _lookup(score: int, bands: tuple[tuple[int, str], ...], floor: str) -> str:
    for threshold, label in bands:
        if score >= threshold:
            return label
    return floor


def basic_tier(score: int) -> str:
    return _lookup(score, BASIC_TIERS, RISK_WATCH)


def enhanced_tier(score: int) -> str:
    return _lookup(score, ENHANCED_TIERS, ENHANCED_FLOOR_TIER)
