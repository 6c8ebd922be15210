"""Scoring engine: basic and enhanced variants."""

from agentscore.scoring.basic import (
    BasicScore,
    activity_score,
    apply_debate_bonus,
    basic_score,
    completion_rate,
)
from agentscore.scoring.engine import ScoringMode, score_agent
from agentscore.scoring.enhanced import EnhancedScore, ScoreComponents, enhanced_score
from agentscore.scoring.tiers import MAX_SCORE, MIN_SCORE, basic_tier, enhanced_tier

__all__ = [
    "MAX_SCORE",
    "MIN_SCORE",
    "BasicScore",
    "EnhancedScore",
    "ScoreComponents",
    "ScoringMode",
    "activity_score",
    "apply_debate_bonus",
    "basic_score",
    "basic_tier",
    "completion_rate",
    "enhanced_score",
    "enhanced_tier",
    "score_agent",
]
