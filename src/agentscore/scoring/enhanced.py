"""Enhanced five-component scoring.

Components (max points):
    task_performance         200  completion rate + log-scaled volume
    financial_reliability    300  financial signal, else slash-based proxy
    dispute_record           150  step function of dispute count
    ecosystem_participation  200  log-scaled age + flat participation credit
    intellectual_reputation  150  debate score, 0 without debate history

The sum is rounded and clamped to [300, 950].
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from agentscore.scoring.basic import completion_rate
from agentscore.scoring.tiers import clamp_score, enhanced_tier

TASK_MAX = 200
FINANCIAL_MAX = 300
DISPUTE_MAX = 150
ECOSYSTEM_MAX = 200
INTELLECTUAL_MAX = 150

TASK_VOLUME_SATURATION = 50
AGE_SATURATION_DAYS = 180

ONCHAIN_WEIGHT = 0.4
FINANCIAL_WEIGHT = 0.3
DEBATE_WEIGHT = 0.3


@dataclass(frozen=True)
class ScoreComponents:
    task_performance: float
    financial_reliability: float
    dispute_record: float
    ecosystem_participation: float
    intellectual_reputation: float

    @property
    def total(self) -> float:
        return (
            self.task_performance
            + self.financial_reliability
            + self.dispute_record
            + self.ecosystem_participation
            + self.intellectual_reputation
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "task_performance": round(self.task_performance, 2),
            "financial_reliability": round(self.financial_reliability, 2),
            "dispute_record": round(self.dispute_record, 2),
            "ecosystem_participation": round(self.ecosystem_participation, 2),
            "intellectual_reputation": round(self.intellectual_reputation, 2),
        }


@dataclass(frozen=True)
class EnhancedScore:
    score: int
    tier: str
    completion_rate: float
    components: ScoreComponents
    data_completeness: float


def task_performance(tasks_completed: int, tasks_failed: int) -> float:
    total = tasks_completed + tasks_failed
    rate = completion_rate(tasks_completed, tasks_failed)
    volume = min(1.0, math.log1p(max(total, 0)) / math.log1p(TASK_VOLUME_SATURATION))
    return TASK_MAX * min(1.0, rate * 0.8 + volume * 0.2)


def financial_reliability(financial_score: float | None, slashes: int) -> float:
    if financial_score is not None:
        return FINANCIAL_MAX * max(0.0, min(1.0, financial_score))
    # Without a financial signal the slash record stands in for it
    proxy = 1.0 if slashes <= 0 else max(0.2, 1 - slashes * 0.2)
    return FINANCIAL_MAX * proxy


def dispute_record(disputes: int) -> float:
    if disputes <= 0:
        factor = 1.0
    elif disputes <= 2:
        factor = 0.7
    elif disputes <= 5:
        factor = 0.4
    else:
        factor = 0.2
    return DISPUTE_MAX * factor


def ecosystem_participation(age_days: float) -> float:
    age_factor = min(1.0, math.log1p(max(age_days, 0)) / math.log1p(AGE_SATURATION_DAYS))
    return ECOSYSTEM_MAX * (age_factor * 0.5 + 0.5)


def intellectual_reputation(debate_score: float | None, total_debates: int) -> float:
    if debate_score is None or total_debates < 1:
        return 0.0
    return INTELLECTUAL_MAX * max(0.0, min(1.0, debate_score))


def data_completeness(*, has_onchain: bool, has_financial: bool, has_debate: bool) -> float:
    completeness = 0.0
    if has_onchain:
        completeness += ONCHAIN_WEIGHT
    if has_financial:
        completeness += FINANCIAL_WEIGHT
    if has_debate:
        completeness += DEBATE_WEIGHT
    return round(completeness, 2)


def enhanced_score(
    *,
    tasks_completed: int,
    tasks_failed: int,
    disputes: int,
    slashes: int,
    age_days: float,
    financial_score: float | None = None,
    debate_score: float | None = None,
    total_debates: int = 0,
) -> EnhancedScore:
    components = ScoreComponents(
        task_performance=task_performance(tasks_completed, tasks_failed),
        financial_reliability=financial_reliability(financial_score, slashes),
        dispute_record=dispute_record(disputes),
        ecosystem_participation=ecosystem_participation(age_days),
        intellectual_reputation=intellectual_reputation(debate_score, total_debates),
    )
    score = clamp_score(components.total)
    return EnhancedScore(
        score=score,
        tier=enhanced_tier(score),
        completion_rate=completion_rate(tasks_completed, tasks_failed),
        components=components,
        data_completeness=data_completeness(
            has_onchain=tasks_completed + tasks_failed > 0,
            has_financial=financial_score is not None,
            has_debate=debate_score is not None and total_debates >= 1,
        ),
    )
