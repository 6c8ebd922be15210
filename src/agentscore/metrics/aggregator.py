"""Per-agent metrics snapshot.

Merges the cumulative on-chain counters of an agent's wallet with the two
optional external signals (debate record, financial activity). The on-chain
block comes from the checkpoint store and a storage failure propagates. The
optional blocks never do: any failure while fetching one of them leaves that
block absent, and scoring works on an all-absent snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from agentscore.sources.debate import DebateRecord, debate_score
from agentscore.sources.financial import FinancialMetrics, financial_score
from agentscore.storage.repos import WalletMetricsDTO, WalletMetricsRepository

if TYPE_CHECKING:
    from agentscore.sources.debate import DebateSource
    from agentscore.sources.financial import FinancialSource
    from agentscore.storage.database import SessionFactory

logger = logging.getLogger(__name__)


@dataclass
class AgentMetrics:
    """Everything the scoring engine knows about one agent."""

    handle: str
    wallet_address: str | None = None
    tasks_completed: int = 0
    tasks_failed: int = 0
    disputes: int = 0
    slashes: int = 0
    first_seen_at: datetime | None = None
    age_days: int = 0
    last_activity_at: datetime | None = None
    post_count: int = 0
    debate: DebateRecord | None = None
    debate_score: float | None = None
    financial: FinancialMetrics | None = None
    financial_score: float | None = None
    as_of: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def total_tasks(self) -> int:
        return self.tasks_completed + self.tasks_failed

    @property
    def has_onchain_data(self) -> bool:
        return self.total_tasks > 0

    @property
    def has_debate_data(self) -> bool:
        return self.debate is not None

    @property
    def has_financial_data(self) -> bool:
        return self.financial is not None

    @classmethod
    def from_wallet_metrics(
        cls,
        handle: str,
        metrics: WalletMetricsDTO,
        *,
        as_of: datetime,
    ) -> AgentMetrics:
        return cls(
            handle=handle,
            wallet_address=metrics.wallet_address,
            tasks_completed=metrics.tasks_completed,
            tasks_failed=metrics.tasks_failed,
            disputes=metrics.disputes,
            slashes=metrics.slashes,
            first_seen_at=metrics.first_seen_at,
            age_days=metrics.age_days(as_of),
            as_of=as_of,
        )


class MetricsAggregator:
    """Builds `AgentMetrics` snapshots from storage and the optional sources."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        debate_source: DebateSource | None = None,
        financial_source: FinancialSource | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._debate = debate_source
        self._financial = financial_source

    async def aggregate(
        self,
        handle: str,
        wallet_address: str | None = None,
        *,
        last_activity_at: datetime | None = None,
        post_count: int = 0,
        as_of: datetime | None = None,
    ) -> AgentMetrics:
        """Snapshot for one agent; absent sources leave their block empty."""
        as_of = as_of or datetime.now(UTC)

        onchain = WalletMetricsDTO.empty(wallet_address) if wallet_address else None
        if wallet_address:
            async with self._session_factory() as session:
                stored = await WalletMetricsRepository(session).get(wallet_address)
            if stored is not None:
                onchain = stored

        if onchain is not None:
            metrics = AgentMetrics.from_wallet_metrics(handle, onchain, as_of=as_of)
        else:
            metrics = AgentMetrics(handle=handle, as_of=as_of)
        metrics.last_activity_at = last_activity_at
        metrics.post_count = post_count

        metrics.debate = await self._fetch_debate(handle)
        if metrics.debate is not None:
            metrics.debate_score = debate_score(metrics.debate, as_of=as_of)

        if wallet_address:
            metrics.financial = await self._fetch_financial(wallet_address)
            if metrics.financial is not None:
                metrics.financial_score = financial_score(metrics.financial)

        return metrics

    async def _fetch_debate(self, handle: str) -> DebateRecord | None:
        if self._debate is None:
            return None
        try:
            return await self._debate.get_record(handle)
        except Exception as e:
            logger.warning("Debate block dropped for %s: %s", handle, e)
            return None

    async def _fetch_financial(self, wallet_address: str) -> FinancialMetrics | None:
        if self._financial is None:
            return None
        try:
            return await self._financial.get_metrics(wallet_address)
        except Exception as e:
            logger.warning("Financial block dropped for %s: %s", wallet_address, e)
            return None
