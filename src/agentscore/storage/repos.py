"""Repository pattern implementations for data access.

This module provides the data access layer for the pipeline. Upserts are
written so that replaying the same input is harmless:

- scan checkpoints only ever move forward;
- wallet metrics are merged additively and keep the earliest first-seen time;
- discovered agents keep their most recent activity and never lose a wallet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from agentscore.storage.models import (
    Base,
    DiscoveredAgentModel,
    RegisteredAgentModel,
    ReplyRecordModel,
    ScanCheckpointModel,
    ScoredAgentModel,
    WalletMetricsModel,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _normalize_wallet(wallet: str | None) -> str | None:
    if not wallet:
        return None
    return wallet.lower()


def _insert(session: AsyncSession, model: type[Base]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _greatest(current: Any, incoming: Any) -> Any:
    return sa.case(
        (incoming.is_(None), current),
        (current.is_(None), incoming),
        (incoming > current, incoming),
        else_=current,
    )


def _least(current: Any, incoming: Any) -> Any:
    return sa.case(
        (incoming.is_(None), current),
        (current.is_(None), incoming),
        (incoming < current, incoming),
        else_=current,
    )


# =============================================================================
# DTOs
# =============================================================================


@dataclass
class DiscoveredAgentDTO:
    """Data transfer object for discovered agents."""

    handle: str
    wallet_address: str | None = None
    last_activity_at: datetime | None = None
    post_count: int = 0
    wallet_requested: bool = False
    source: str = "social"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: DiscoveredAgentModel) -> DiscoveredAgentDTO:
        return cls(
            handle=model.handle,
            wallet_address=model.wallet_address,
            last_activity_at=_as_utc(model.last_activity_at),
            post_count=model.post_count,
            wallet_requested=model.wallet_requested,
            source=model.source,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass(frozen=True)
class WalletMetricsDelta:
    """Counter increments for one wallet, produced from a window of logs."""

    tasks_completed: int = 0
    tasks_failed: int = 0
    disputes: int = 0
    slashes: int = 0
    first_seen_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.tasks_completed == 0
            and self.tasks_failed == 0
            and self.disputes == 0
            and self.slashes == 0
            and self.first_seen_at is None
        )

    def combine(self, other: WalletMetricsDelta) -> WalletMetricsDelta:
        """Sum the counters and keep the earlier first-seen time."""
        if self.first_seen_at is None:
            first_seen = other.first_seen_at
        elif other.first_seen_at is None:
            first_seen = self.first_seen_at
        else:
            first_seen = min(self.first_seen_at, other.first_seen_at)
        return WalletMetricsDelta(
            tasks_completed=self.tasks_completed + other.tasks_completed,
            tasks_failed=self.tasks_failed + other.tasks_failed,
            disputes=self.disputes + other.disputes,
            slashes=self.slashes + other.slashes,
            first_seen_at=first_seen,
        )


@dataclass
class WalletMetricsDTO:
    """Data transfer object for cumulative wallet metrics."""

    wallet_address: str
    tasks_completed: int = 0
    tasks_failed: int = 0
    disputes: int = 0
    slashes: int = 0
    first_seen_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def empty(cls, wallet_address: str) -> WalletMetricsDTO:
        return cls(wallet_address=wallet_address.lower())

    @classmethod
    def from_model(cls, model: WalletMetricsModel) -> WalletMetricsDTO:
        return cls(
            wallet_address=model.wallet_address,
            tasks_completed=model.tasks_completed,
            tasks_failed=model.tasks_failed,
            disputes=model.disputes,
            slashes=model.slashes,
            first_seen_at=_as_utc(model.first_seen_at),
            updated_at=_as_utc(model.updated_at),
        )

    def age_days(self, as_of: datetime) -> int:
        """Whole days between the first on-chain event and `as_of`."""
        if self.first_seen_at is None:
            return 0
        return max(0, int((as_of - self.first_seen_at).total_seconds() // 86_400))


@dataclass
class ScoredAgentDTO:
    """Data transfer object for scored agents."""

    handle: str
    score: int
    tier: str
    wallet_address: str | None = None
    scoring_mode: str = "basic"
    completion_rate: float = 0.0
    tasks_completed: int = 0
    tasks_failed: int = 0
    disputes: int = 0
    slashes: int = 0
    age_days: int = 0
    components: dict[str, Any] | None = None
    data_completeness: float | None = None
    has_onchain_data: bool = False
    has_financial_data: bool = False
    has_debate_data: bool = False
    previous_score: int | None = None
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_model(cls, model: ScoredAgentModel) -> ScoredAgentDTO:
        return cls(
            handle=model.handle,
            score=model.score,
            tier=model.tier,
            wallet_address=model.wallet_address,
            scoring_mode=model.scoring_mode,
            completion_rate=model.completion_rate,
            tasks_completed=model.tasks_completed,
            tasks_failed=model.tasks_failed,
            disputes=model.disputes,
            slashes=model.slashes,
            age_days=model.age_days,
            components=model.components,
            data_completeness=model.data_completeness,
            has_onchain_data=model.has_onchain_data,
            has_financial_data=model.has_financial_data,
            has_debate_data=model.has_debate_data,
            previous_score=model.previous_score,
            computed_at=_as_utc(model.computed_at) or datetime.now(UTC),
        )

    @property
    def score_delta(self) -> int | None:
        if self.previous_score is None:
            return None
        return self.score - self.previous_score


@dataclass
class RegisteredAgentDTO:
    """Data transfer object for identity-registry registrations."""

    agent_id: int
    owner_address: str
    wallet_address: str | None = None
    agent_uri: str | None = None
    registered_block: int | None = None
    discovered_at: datetime | None = None

    @classmethod
    def from_model(cls, model: RegisteredAgentModel) -> RegisteredAgentDTO:
        return cls(
            agent_id=model.agent_id,
            owner_address=model.owner_address,
            wallet_address=model.wallet_address,
            agent_uri=model.agent_uri,
            registered_block=model.registered_block,
            discovered_at=_as_utc(model.discovered_at),
        )


# =============================================================================
# Repositories
# =============================================================================


class ScanCheckpointRepository:
    """Durable per-source scan heights."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_height(self, source_key: str) -> int | None:
        result = await self.session.execute(
            select(ScanCheckpointModel.last_processed_height).where(ScanCheckpointModel.source_key == source_key)
        )
        return result.scalar_one_or_none()

    async def advance(self, source_key: str, height: int) -> None:
        """Move the checkpoint to `height` unless it is already past it."""
        now = datetime.now(UTC)
        stmt = _insert(self.session, ScanCheckpointModel).values(
            source_key=source_key,
            last_processed_height=height,
            updated_at=now,
        )
        current = ScanCheckpointModel.__table__.c.last_processed_height
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_key"],
            set_={
                "last_processed_height": _greatest(current, stmt.excluded.last_processed_height),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def list_all(self) -> dict[str, int]:
        result = await self.session.execute(select(ScanCheckpointModel))
        return {m.source_key: m.last_processed_height for m in result.scalars().all()}


class WalletMetricsRepository:
    """Cumulative per-wallet counters, mutated only by additive merge."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, wallet_address: str) -> WalletMetricsDTO | None:
        result = await self.session.execute(
            select(WalletMetricsModel).where(WalletMetricsModel.wallet_address == wallet_address.lower())
        )
        model = result.scalar_one_or_none()
        return WalletMetricsDTO.from_model(model) if model else None

    async def merge(self, wallet_address: str, delta: WalletMetricsDelta) -> None:
        """Add `delta` to the wallet's counters, creating the row if needed."""
        if delta.is_empty:
            return
        now = datetime.now(UTC)
        stmt = _insert(self.session, WalletMetricsModel).values(
            wallet_address=wallet_address.lower(),
            tasks_completed=delta.tasks_completed,
            tasks_failed=delta.tasks_failed,
            disputes=delta.disputes,
            slashes=delta.slashes,
            first_seen_at=delta.first_seen_at,
            updated_at=now,
        )
        cols = WalletMetricsModel.__table__.c
        stmt = stmt.on_conflict_do_update(
            index_elements=["wallet_address"],
            set_={
                "tasks_completed": cols.tasks_completed + stmt.excluded.tasks_completed,
                "tasks_failed": cols.tasks_failed + stmt.excluded.tasks_failed,
                "disputes": cols.disputes + stmt.excluded.disputes,
                "slashes": cols.slashes + stmt.excluded.slashes,
                "first_seen_at": _least(cols.first_seen_at, stmt.excluded.first_seen_at),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def merge_many(self, deltas: Mapping[str, WalletMetricsDelta]) -> int:
        merged = 0
        for wallet, delta in deltas.items():
            if delta.is_empty:
                continue
            await self.merge(wallet, delta)
            merged += 1
        await self.session.flush()
        return merged


class DiscoveredAgentRepository:
    """Agents known to the pipeline; rows are upserted, never deleted."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, handle: str) -> DiscoveredAgentDTO | None:
        result = await self.session.execute(select(DiscoveredAgentModel).where(DiscoveredAgentModel.handle == handle))
        model = result.scalar_one_or_none()
        return DiscoveredAgentDTO.from_model(model) if model else None

    async def upsert(self, dto: DiscoveredAgentDTO) -> None:
        """Record a sighting of an agent.

        A non-null wallet replaces the stored one and clears the
        wallet-requested flag; a null wallet never erases a stored one.
        Activity time and post count only move forward.
        """
        now = datetime.now(UTC)
        wallet = _normalize_wallet(dto.wallet_address)
        stmt = _insert(self.session, DiscoveredAgentModel).values(
            handle=dto.handle,
            wallet_address=wallet,
            last_activity_at=dto.last_activity_at,
            post_count=dto.post_count,
            wallet_requested=dto.wallet_requested,
            source=dto.source,
            created_at=now,
            updated_at=now,
        )
        cols = DiscoveredAgentModel.__table__.c
        stmt = stmt.on_conflict_do_update(
            index_elements=["handle"],
            set_={
                "wallet_address": func.coalesce(stmt.excluded.wallet_address, cols.wallet_address),
                "wallet_requested": sa.case(
                    (stmt.excluded.wallet_address.is_not(None), sa.false()),
                    else_=cols.wallet_requested,
                ),
                "last_activity_at": _greatest(cols.last_activity_at, stmt.excluded.last_activity_at),
                "post_count": _greatest(cols.post_count, stmt.excluded.post_count),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def upsert_many(self, dtos: Iterable[DiscoveredAgentDTO]) -> int:
        count = 0
        for dto in dtos:
            await self.upsert(dto)
            count += 1
        await self.session.flush()
        return count

    async def seed(self, handle: str, wallet_address: str | None = None) -> None:
        """Insert an agent ahead of the next cycle without clobbering existing fields."""
        now = datetime.now(UTC)
        stmt = _insert(self.session, DiscoveredAgentModel).values(
            handle=handle,
            wallet_address=_normalize_wallet(wallet_address),
            post_count=0,
            wallet_requested=False,
            source="intake",
            created_at=now,
            updated_at=now,
        )
        cols = DiscoveredAgentModel.__table__.c
        stmt = stmt.on_conflict_do_update(
            index_elements=["handle"],
            set_={
                "wallet_address": func.coalesce(cols.wallet_address, stmt.excluded.wallet_address),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def set_wallet(self, handle: str, wallet_address: str) -> None:
        """Store a wallet learned from a reply and clear the wallet-requested flag."""
        await self.upsert(DiscoveredAgentDTO(handle=handle, wallet_address=wallet_address))
        await self.session.flush()

    async def mark_wallet_requested(self, handle: str) -> None:
        await self.session.execute(
            update(DiscoveredAgentModel)
            .where(DiscoveredAgentModel.handle == handle)
            .values(wallet_requested=True, updated_at=datetime.now(UTC))
        )
        await self.session.flush()

    async def list_all(self) -> list[DiscoveredAgentDTO]:
        result = await self.session.execute(select(DiscoveredAgentModel).order_by(DiscoveredAgentModel.handle))
        return [DiscoveredAgentDTO.from_model(m) for m in result.scalars().all()]

    async def list_needing_wallet(self, limit: int) -> list[DiscoveredAgentDTO]:
        """Agents with no wallet that have not been asked for one yet, most recently active first."""
        stmt = (
            select(DiscoveredAgentModel)
            .where(DiscoveredAgentModel.wallet_address.is_(None))
            .where(DiscoveredAgentModel.wallet_requested.is_(False))
            .order_by(DiscoveredAgentModel.last_activity_at.desc().nulls_last())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [DiscoveredAgentDTO.from_model(m) for m in result.scalars().all()]

    async def get_wallets(self, handles: Iterable[str]) -> dict[str, str]:
        handle_list = list(handles)
        if not handle_list:
            return {}
        result = await self.session.execute(
            select(DiscoveredAgentModel.handle, DiscoveredAgentModel.wallet_address)
            .where(DiscoveredAgentModel.handle.in_(handle_list))
            .where(DiscoveredAgentModel.wallet_address.is_not(None))
        )
        return {handle: wallet for handle, wallet in result.all()}


class ScoredAgentRepository:
    """Latest score per agent; the prior score is kept for deltas."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, handle: str) -> ScoredAgentDTO | None:
        result = await self.session.execute(select(ScoredAgentModel).where(ScoredAgentModel.handle == handle))
        model = result.scalar_one_or_none()
        return ScoredAgentDTO.from_model(model) if model else None

    async def upsert(self, dto: ScoredAgentDTO) -> None:
        values = {
            "handle": dto.handle,
            "wallet_address": _normalize_wallet(dto.wallet_address),
            "score": dto.score,
            "tier": dto.tier,
            "scoring_mode": dto.scoring_mode,
            "completion_rate": dto.completion_rate,
            "tasks_completed": dto.tasks_completed,
            "tasks_failed": dto.tasks_failed,
            "disputes": dto.disputes,
            "slashes": dto.slashes,
            "age_days": dto.age_days,
            "components": dto.components,
            "data_completeness": dto.data_completeness,
            "has_onchain_data": dto.has_onchain_data,
            "has_financial_data": dto.has_financial_data,
            "has_debate_data": dto.has_debate_data,
            "computed_at": dto.computed_at,
        }
        stmt = _insert(self.session, ScoredAgentModel).values(**values, previous_score=None)
        cols = ScoredAgentModel.__table__.c
        set_ = {key: getattr(stmt.excluded, key) for key in values if key != "handle"}
        set_["previous_score"] = cols.score
        stmt = stmt.on_conflict_do_update(index_elements=["handle"], set_=set_)
        await self.session.execute(stmt)

    async def upsert_many(self, dtos: Iterable[ScoredAgentDTO]) -> int:
        count = 0
        for dto in dtos:
            await self.upsert(dto)
            count += 1
        await self.session.flush()
        return count

    async def list_top(self, limit: int, *, min_score: int | None = None) -> list[ScoredAgentDTO]:
        stmt = select(ScoredAgentModel).order_by(ScoredAgentModel.score.desc(), ScoredAgentModel.handle)
        if min_score is not None:
            stmt = stmt.where(ScoredAgentModel.score >= min_score)
        result = await self.session.execute(stmt.limit(limit))
        return [ScoredAgentDTO.from_model(m) for m in result.scalars().all()]


class ReplyRecordRepository:
    """Outreach reply history driving per-handle cooldowns and the daily cap."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def last_reply_at(self, handle: str) -> datetime | None:
        result = await self.session.execute(
            select(ReplyRecordModel.replied_at).where(ReplyRecordModel.handle == handle)
        )
        return _as_utc(result.scalar_one_or_none())

    async def record(self, handle: str, replied_at: datetime, post_id: str | None = None) -> None:
        stmt = _insert(self.session, ReplyRecordModel).values(handle=handle, replied_at=replied_at, post_id=post_id)
        stmt = stmt.on_conflict_do_update(
            index_elements=["handle"],
            set_={"replied_at": stmt.excluded.replied_at, "post_id": stmt.excluded.post_id},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def count_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ReplyRecordModel).where(ReplyRecordModel.replied_at >= since)
        )
        return int(result.scalar_one())


class RegisteredAgentRepository:
    """Identity-registry registrations decoded by the chain scanner."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, agent_id: int) -> RegisteredAgentDTO | None:
        result = await self.session.execute(
            select(RegisteredAgentModel).where(RegisteredAgentModel.agent_id == agent_id)
        )
        model = result.scalar_one_or_none()
        return RegisteredAgentDTO.from_model(model) if model else None

    async def upsert_many(self, dtos: Iterable[RegisteredAgentDTO]) -> int:
        """Insert registrations; a previously resolved wallet is never overwritten."""
        count = 0
        now = datetime.now(UTC)
        for dto in dtos:
            stmt = _insert(self.session, RegisteredAgentModel).values(
                agent_id=dto.agent_id,
                owner_address=dto.owner_address.lower(),
                wallet_address=_normalize_wallet(dto.wallet_address),
                agent_uri=dto.agent_uri,
                registered_block=dto.registered_block,
                discovered_at=now,
            )
            cols = RegisteredAgentModel.__table__.c
            stmt = stmt.on_conflict_do_update(
                index_elements=["agent_id"],
                set_={
                    "owner_address": stmt.excluded.owner_address,
                    "wallet_address": func.coalesce(cols.wallet_address, stmt.excluded.wallet_address),
                    "agent_uri": func.coalesce(stmt.excluded.agent_uri, cols.agent_uri),
                },
            )
            await self.session.execute(stmt)
            count += 1
        await self.session.flush()
        return count

    async def set_wallet(self, agent_id: int, wallet_address: str) -> None:
        await self.session.execute(
            update(RegisteredAgentModel)
            .where(RegisteredAgentModel.agent_id == agent_id)
            .values(wallet_address=wallet_address.lower())
        )

    async def list_ids_after(self, agent_id: int, limit: int) -> list[int]:
        """Registered agent ids greater than `agent_id`, ascending."""
        result = await self.session.execute(
            select(RegisteredAgentModel.agent_id)
            .where(RegisteredAgentModel.agent_id > agent_id)
            .order_by(RegisteredAgentModel.agent_id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(RegisteredAgentModel))
        return int(result.scalar_one())
