"""Basic scoring: on-chain counters, social activity, debate bonus.

All functions are pure; the same inputs always produce the same result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from agentscore.scoring.tiers import MAX_SCORE, basic_tier, clamp_score, round_half_up

BASE_SCORE = 700
COMPLETION_WEIGHT = 200
DISPUTE_PENALTY = 25
SLASH_PENALTY = 50
AGE_BONUS = 50
AGE_FULL_CREDIT_DAYS = 30

# Activity path (agents without on-chain history)
ACTIVITY_BASE = 400
NO_ACTIVITY_HOURS = 24 * 365
MAX_COUNTED_POSTS = 20

# Debate rating bonus
DEBATE_RATING_FLOOR = 980.0
DEBATE_RATING_CEILING = 1200.0
MAX_DEBATE_BONUS = 40


@dataclass(frozen=True)
class BasicScore:
    score: int
    tier: str
    completion_rate: float


def completion_rate(tasks_completed: int, tasks_failed: int) -> float:
    """Share of finished tasks that completed; 0 when nothing finished."""
    total = tasks_completed + tasks_failed
    if total <= 0:
        return 0.0
    return tasks_completed / total


def basic_score(
    *,
    tasks_completed: int,
    tasks_failed: int,
    disputes: int,
    slashes: int,
    age_days: float,
) -> BasicScore:
    """On-chain score.

    Score Formula:
        score = 700 + 200 * completion_rate - 25 * disputes - 50 * slashes
                + 50 * min(age_days / 30, 1)
        clamped to [300, 950]
    """
    rate = completion_rate(tasks_completed, tasks_failed)
    raw = (
        BASE_SCORE
        + rate * COMPLETION_WEIGHT
        - disputes * DISPUTE_PENALTY
        - slashes * SLASH_PENALTY
        + min(max(age_days, 0) / AGE_FULL_CREDIT_DAYS, 1.0) * AGE_BONUS
    )
    score = clamp_score(raw)
    return BasicScore(score=score, tier=basic_tier(score), completion_rate=rate)


def activity_score(
    *,
    last_activity_at: datetime | None,
    post_count: int,
    as_of: datetime,
) -> BasicScore:
    """Score for agents known only from the social feed."""
    if last_activity_at is None:
        hours = float(NO_ACTIVITY_HOURS)
    else:
        hours = max(0.0, (as_of - last_activity_at).total_seconds() / 3600)
    recency = max(0.0, 100 - hours * 4)
    activity = min(max(post_count, 0), MAX_COUNTED_POSTS) * 4
    score = clamp_score(ACTIVITY_BASE + recency * 3 + activity * 2)
    return BasicScore(score=score, tier=basic_tier(score), completion_rate=0.0)


def debate_bonus(rating: float | None) -> int:
    """0-40 points from the debate leaderboard rating."""
    if rating is None:
        return 0
    span = DEBATE_RATING_CEILING - DEBATE_RATING_FLOOR
    fraction = max(0.0, min(1.0, (rating - DEBATE_RATING_FLOOR) / span))
    return round_half_up(fraction * MAX_DEBATE_BONUS)


def apply_debate_bonus(result: BasicScore, rating: float | None) -> BasicScore:
    bonus = debate_bonus(rating)
    if bonus == 0:
        return result
    score = min(MAX_SCORE, result.score + bonus)
    return BasicScore(score=score, tier=basic_tier(score), completion_rate=result.completion_rate)
