"""Deterministic on-chain-only score (0-100) for attestation.

Components (max points):
    peer_reputation        40  average feedback value + log-scaled review count
    task_completion        30  completion rate + log-scaled completed volume
    economic_activity      20  log-scaled escrow value
    identity_completeness  10  registered + metadata + skills + verified owner

The message that gets signed is the compact JSON of the output without its
input, so any verifier can rebuild it byte for byte.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from agentscore.scoring.tiers import round_half_up

SCORING_VERSION = "1.0.0"
MAX_ATTESTED_SCORE = 100
WEI_PER_ETH = 10**18


@dataclass(frozen=True)
class ScoreInput:
    agent_id: int
    feedback_count: int = 0
    feedback_value: float = 0.0
    completed_mandates: int = 0
    total_mandates: int = 0
    total_escrow_wei: int = 0
    has_metadata: bool = False
    has_skills: bool = False
    owner_verified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "feedbackCount": self.feedback_count,
            "feedbackValue": self.feedback_value,
            "completedMandates": self.completed_mandates,
            "totalMandates": self.total_mandates,
            "totalEscrowWei": str(self.total_escrow_wei),
            "hasMetadata": self.has_metadata,
            "hasSkills": self.has_skills,
            "ownerVerified": self.owner_verified,
        }


@dataclass(frozen=True)
class AttestedComponents:
    peer_reputation: int
    task_completion: int
    economic_activity: int
    identity_completeness: int

    @property
    def total(self) -> int:
        return self.peer_reputation + self.task_completion + self.economic_activity + self.identity_completeness

    def to_dict(self) -> dict[str, int]:
        return {
            "peerReputation": self.peer_reputation,
            "taskCompletion": self.task_completion,
            "economicActivity": self.economic_activity,
            "identityCompleteness": self.identity_completeness,
        }


@dataclass(frozen=True)
class ScoreOutput:
    agent_id: int
    score: int
    components: AttestedComponents
    input: ScoreInput
    timestamp: int
    version: str = SCORING_VERSION

    def message(self) -> str:
        """Canonical text that is signed and verified."""
        return json.dumps(
            {
                "agentId": self.agent_id,
                "score": self.score,
                "components": self.components.to_dict(),
                "timestamp": self.timestamp,
                "version": self.version,
            },
            separators=(",", ":"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "score": self.score,
            "components": self.components.to_dict(),
            "input": self.input.to_dict(),
            "timestamp": self.timestamp,
            "version": self.version,
        }


def peer_reputation(feedback_count: int, feedback_value: float) -> int:
    if feedback_count <= 0:
        return 0
    average = feedback_value / feedback_count
    normalized = min(1.0, max(0.0, average / 100))
    count_bonus = min(15.0, math.log2(feedback_count + 1) * 2.5)
    return round_half_up(normalized * 25 + count_bonus)


def task_completion(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    rate = completed / total
    volume_bonus = min(10.0, math.log2(max(completed, 0) + 1) * 2.3)
    return round_half_up(rate * 20 + volume_bonus)


def economic_activity(total_escrow_wei: int) -> int:
    if total_escrow_wei <= 0:
        return 0
    eth = total_escrow_wei / WEI_PER_ETH
    return min(20, round_half_up(math.log10(eth * 100 + 1) * 5))


def identity_completeness(*, has_metadata: bool, has_skills: bool, owner_verified: bool) -> int:
    points = 2
    if has_metadata:
        points += 3
    if has_skills:
        points += 3
    if owner_verified:
        points += 2
    return points


def compute_score(score_input: ScoreInput, *, timestamp: int) -> ScoreOutput:
    """Pure: the same input and timestamp always give the same output."""
    components = AttestedComponents(
        peer_reputation=peer_reputation(score_input.feedback_count, score_input.feedback_value),
        task_completion=task_completion(score_input.completed_mandates, score_input.total_mandates),
        economic_activity=economic_activity(score_input.total_escrow_wei),
        identity_completeness=identity_completeness(
            has_metadata=score_input.has_metadata,
            has_skills=score_input.has_skills,
            owner_verified=score_input.owner_verified,
        ),
    )
    return ScoreOutput(
        agent_id=score_input.agent_id,
        score=min(MAX_ATTESTED_SCORE, components.total),
        components=components,
        input=score_input,
        timestamp=timestamp,
    )
