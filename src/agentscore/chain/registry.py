"""Identity and reputation registry reads.

Minimal ABIs for the agent identity registry (ERC-721 style, one token per
agent) and the reputation registry, plus batched wallet resolution for
agents decoded from `Registered` events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from agentscore.chain.client import ChainClient, RPCError
from agentscore.chain.events import ZERO_ADDRESS
from agentscore.storage.database import SessionFactory
from agentscore.storage.repos import RegisteredAgentRepository

logger = logging.getLogger(__name__)

DEFAULT_WALLET_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY_SECONDS = 0.2


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]]) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


IDENTITY_ABI: list[dict[str, Any]] = [
    _fn("tokenURI", [("agentId", "uint256")], [("", "string")]),
    _fn("getAgentWallet", [("agentId", "uint256")], [("", "address")]),
    _fn("ownerOf", [("agentId", "uint256")], [("", "address")]),
]

REPUTATION_ABI: list[dict[str, Any]] = [
    _fn("getClients", [("agentId", "uint256")], [("", "address[]")]),
    _fn(
        "getSummary",
        [("agentId", "uint256"), ("clientAddresses", "address[]"), ("tag1", "string"), ("tag2", "string")],
        [("count", "uint64"), ("summaryValue", "int128"), ("summaryValueDecimals", "uint8")],
    ),
]


@dataclass(frozen=True)
class ReputationSummary:
    """Aggregated on-chain peer feedback for an agent."""

    feedback_count: int
    feedback_value: int
    value_decimals: int = 0


class RegistryReader:
    """View-function reads against the identity and reputation registries."""

    def __init__(self, client: ChainClient, *, identity_address: str, reputation_address: str) -> None:
        self._client = client
        self._identity = identity_address
        self._reputation = reputation_address

    async def token_uri(self, agent_id: int) -> str:
        return str(await self._client.call_function(self._identity, IDENTITY_ABI, "tokenURI", agent_id))

    async def owner_of(self, agent_id: int) -> str:
        return str(await self._client.call_function(self._identity, IDENTITY_ABI, "ownerOf", agent_id))

    async def agent_wallet(self, agent_id: int) -> str:
        return str(await self._client.call_function(self._identity, IDENTITY_ABI, "getAgentWallet", agent_id))

    async def reputation_summary(self, agent_id: int) -> ReputationSummary:
        """Feedback summary across every client that reviewed the agent."""
        clients = await self._client.call_function(self._reputation, REPUTATION_ABI, "getClients", agent_id)
        if not clients:
            return ReputationSummary(feedback_count=0, feedback_value=0)
        count, value, decimals = await self._client.call_function(
            self._reputation, REPUTATION_ABI, "getSummary", agent_id, list(clients), "", ""
        )
        return ReputationSummary(feedback_count=int(count), feedback_value=int(value), value_decimals=int(decimals))


async def resolve_wallets(
    reader: RegistryReader,
    session_factory: SessionFactory,
    agent_ids: Sequence[int],
    *,
    batch_size: int = DEFAULT_WALLET_BATCH_SIZE,
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> int:
    """Replace owner-as-wallet defaults with each agent's declared wallet.

    Calls `getAgentWallet` concurrently in batches; failed calls and the zero
    address leave the stored wallet untouched.

    Returns:
        Number of agents whose wallet was updated.
    """
    updated = 0
    for i in range(0, len(agent_ids), batch_size):
        batch = list(agent_ids[i : i + batch_size])
        results = await asyncio.gather(*(reader.agent_wallet(a) for a in batch), return_exceptions=True)

        resolved: list[tuple[int, str]] = []
        for agent_id, result in zip(batch, results, strict=True):
            if isinstance(result, RPCError):
                logger.debug("getAgentWallet failed for agent %d: %s", agent_id, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result and result.lower() != ZERO_ADDRESS:
                resolved.append((agent_id, result))

        if resolved:
            async with session_factory() as session:
                repo = RegisteredAgentRepository(session)
                for agent_id, wallet in resolved:
                    await repo.set_wallet(agent_id, wallet)
            updated += len(resolved)

        if i + batch_size < len(agent_ids):
            await sleep(batch_delay_seconds)

    logger.info("resolve_wallets: updated %d/%d", updated, len(agent_ids))
    return updated
