"""Turns an `AgentMetrics` snapshot into a `ScoredAgentDTO`."""

from __future__ import annotations

from typing import Literal

from agentscore.metrics.aggregator import AgentMetrics
from agentscore.scoring.basic import activity_score, apply_debate_bonus, basic_score
from agentscore.scoring.enhanced import enhanced_score
from agentscore.storage.repos import ScoredAgentDTO

ScoringMode = Literal["basic", "enhanced"]


def score_basic(metrics: AgentMetrics) -> ScoredAgentDTO:
    """Wallet agents get the on-chain score, the rest the activity score.

    Either way a debate rating adds its bonus on top.
    """
    if metrics.wallet_address:
        result = basic_score(
            tasks_completed=metrics.tasks_completed,
            tasks_failed=metrics.tasks_failed,
            disputes=metrics.disputes,
            slashes=metrics.slashes,
            age_days=metrics.age_days,
        )
    else:
        result = activity_score(
            last_activity_at=metrics.last_activity_at,
            post_count=metrics.post_count,
            as_of=metrics.as_of,
        )
    rating = metrics.debate.rating if metrics.debate is not None else None
    result = apply_debate_bonus(result, rating)
    return _dto(metrics, mode="basic", score=result.score, tier=result.tier, completion_rate=result.completion_rate)


def score_enhanced(metrics: AgentMetrics) -> ScoredAgentDTO:
    total_debates = metrics.debate.total_debates if metrics.debate is not None else 0
    result = enhanced_score(
        tasks_completed=metrics.tasks_completed,
        tasks_failed=metrics.tasks_failed,
        disputes=metrics.disputes,
        slashes=metrics.slashes,
        age_days=metrics.age_days,
        financial_score=metrics.financial_score,
        debate_score=metrics.debate_score,
        total_debates=total_debates,
    )
    dto = _dto(metrics, mode="enhanced", score=result.score, tier=result.tier, completion_rate=result.completion_rate)
    dto.components = result.components.to_dict()
    dto.data_completeness = result.data_completeness
    return dto


def score_agent(metrics: AgentMetrics, mode: ScoringMode = "basic") -> ScoredAgentDTO:
    if mode == "enhanced":
        return score_enhanced(metrics)
    return score_basic(metrics)


def _dto(
    metrics: AgentMetrics,
    *,
    mode: ScoringMode,
    score: int,
    tier: str,
    completion_rate: float,
) -> ScoredAgentDTO:
    return ScoredAgentDTO(
        handle=metrics.handle,
        score=score,
        tier=tier,
        wallet_address=metrics.wallet_address,
        scoring_mode=mode,
        completion_rate=completion_rate,
        tasks_completed=metrics.tasks_completed,
        tasks_failed=metrics.tasks_failed,
        disputes=metrics.disputes,
        slashes=metrics.slashes,
        age_days=metrics.age_days,
        has_onchain_data=metrics.has_onchain_data,
        has_financial_data=metrics.has_financial_data,
        has_debate_data=metrics.debate is not None and metrics.debate.total_debates > 0,
        computed_at=metrics.as_of,
    )
