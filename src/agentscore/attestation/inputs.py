"""Gathering attestation inputs from the registries.

Every read is independent: a reverted or failed call leaves its input at the
default (an agent that does not exist simply scores the registration floor).
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentscore.attestation.scoring import ScoreInput
from agentscore.chain.client import RPCError
from agentscore.chain.events import ZERO_ADDRESS
from agentscore.storage.repos import RegisteredAgentRepository, WalletMetricsRepository

if TYPE_CHECKING:
    from agentscore.chain.registry import RegistryReader
    from agentscore.storage.database import SessionFactory

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:application/json;base64,"
MAX_SKILLS = 6
MAX_SERVICES = 5


@dataclass(frozen=True)
class AgentMetadata:
    """What an agent's token URI declares about it."""

    has_metadata: bool = False
    name: str | None = None
    skills: list[str] = field(default_factory=list)
    services: list[dict[str, str]] = field(default_factory=list)
    mentions_skills: bool = False

    @property
    def has_skills(self) -> bool:
        return self.mentions_skills or bool(self.skills) or bool(self.services)


def _decode_data_uri(uri: str) -> dict[str, Any] | None:
    if not uri.startswith(DATA_URI_PREFIX):
        return None
    try:
        decoded = base64.b64decode(uri[len(DATA_URI_PREFIX) :], validate=False).decode("utf-8")
        data = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _leaf(path: Any) -> str:
    return str(path).split("/")[-1].replace("_", " ")


def _extract_skills(data: dict[str, Any]) -> list[str]:
    skills: list[str] = []
    services = data.get("services")
    if isinstance(services, list):
        for service in services:
            if not isinstance(service, dict):
                continue
            for key in ("skills", "domains"):
                values = service.get(key)
                if isinstance(values, list):
                    skills.extend(_leaf(v) for v in values if v)
    top = data.get("skills") or data.get("tags") or data.get("categories")
    if isinstance(top, list):
        skills.extend(s.replace("_", " ") for s in top if isinstance(s, str))
    unique = list(dict.fromkeys(s for s in skills if s))
    return unique[:MAX_SKILLS]


def _extract_services(data: dict[str, Any]) -> list[dict[str, str]]:
    services = data.get("services")
    if not isinstance(services, list):
        return []
    found = [
        {"name": str(s["name"]), "endpoint": str(s["endpoint"])}
        for s in services
        if isinstance(s, dict) and s.get("name") and s.get("endpoint")
    ]
    return found[:MAX_SERVICES]


def parse_agent_uri(uri: str | None) -> AgentMetadata:
    """Metadata declared by a token URI.

    Inline `data:` JSON is decoded; any other non-empty URI counts as
    metadata, and as skill-bearing when it mentions skills or an endpoint.
    """
    if not uri or not uri.strip():
        return AgentMetadata()
    data = _decode_data_uri(uri)
    if data is not None:
        name = data.get("name")
        return AgentMetadata(
            has_metadata=True,
            name=name if isinstance(name, str) else None,
            skills=_extract_skills(data),
            services=_extract_services(data),
        )
    return AgentMetadata(has_metadata=True, mentions_skills="skills" in uri or "endpoint" in uri)


async def fetch_score_input(
    reader: RegistryReader,
    agent_id: int,
    *,
    session_factory: SessionFactory | None = None,
) -> ScoreInput:
    """Read everything the attested score needs for one agent."""
    metadata = AgentMetadata()
    try:
        metadata = parse_agent_uri(await reader.token_uri(agent_id))
    except RPCError as e:
        logger.info("tokenURI unavailable for agent %d: %s", agent_id, e)

    owner_verified = False
    try:
        owner = await reader.owner_of(agent_id)
        owner_verified = bool(owner) and owner.lower() != ZERO_ADDRESS
    except RPCError as e:
        logger.info("ownerOf unavailable for agent %d: %s", agent_id, e)

    feedback_count = 0
    feedback_value = 0.0
    try:
        summary = await reader.reputation_summary(agent_id)
        feedback_count = summary.feedback_count
        feedback_value = summary.feedback_value / (10**summary.value_decimals)
    except RPCError as e:
        logger.info("Reputation summary unavailable for agent %d: %s", agent_id, e)

    completed = total = 0
    if session_factory is not None:
        completed, total = await _task_counts(session_factory, agent_id)

    return ScoreInput(
        agent_id=agent_id,
        feedback_count=feedback_count,
        feedback_value=feedback_value,
        completed_mandates=completed,
        total_mandates=total,
        has_metadata=metadata.has_metadata,
        has_skills=metadata.has_skills,
        owner_verified=owner_verified,
    )


async def _task_counts(session_factory: SessionFactory, agent_id: int) -> tuple[int, int]:
    """Completed and finished task counts scanned for the agent's wallet."""
    async with session_factory() as session:
        agent = await RegisteredAgentRepository(session).get(agent_id)
        if agent is None:
            return 0, 0
        wallet = agent.wallet_address or agent.owner_address
        metrics = await WalletMetricsRepository(session).get(wallet)
    if metrics is None:
        return 0, 0
    return metrics.tasks_completed, metrics.tasks_completed + metrics.tasks_failed
