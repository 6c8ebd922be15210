"""SQLAlchemy models for persistent storage.

This module defines the schema backing the pipeline: discovered agents,
per-wallet cumulative on-chain metrics, scan checkpoints, scored agents,
reply records and identity-registry registrations.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DiscoveredAgentModel(Base):
    """Agents seen on the social feed, the identity registry, or via intake."""

    __tablename__ = "discovered_agents"

    handle: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    post_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wallet_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="social")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_discovered_agents_wallet", "wallet_address"),
        Index("idx_discovered_agents_last_activity", "last_activity_at"),
    )


class WalletMetricsModel(Base):
    """Cumulative on-chain counters per wallet.

    Rows are only ever changed by additive merges; `first_seen_at` keeps
    the earliest block timestamp observed for the wallet.
    """

    __tablename__ = "wallet_metrics"

    wallet_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disputes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    slashes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ScanCheckpointModel(Base):
    """Highest block height durably folded into metrics, per scan source."""

    __tablename__ = "scan_checkpoints"

    source_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_processed_height: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ScoredAgentModel(Base):
    """Latest computed score per agent (recomputed every cycle)."""

    __tablename__ = "scored_agents"

    handle: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    previous_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scoring_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="basic")

    completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disputes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    slashes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    age_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    components: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    data_completeness: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_onchain_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_financial_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_debate_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_scored_agents_score", "score"),)


class ReplyRecordModel(Base):
    """Most recent outreach reply per handle."""

    __tablename__ = "reply_records"

    handle: Mapped[str] = mapped_column(String(64), primary_key=True)
    replied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    post_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (Index("idx_reply_records_replied_at", "replied_at"),)


class RegisteredAgentModel(Base):
    """Agents decoded from identity-registry `Registered` events."""

    __tablename__ = "registered_agents"

    agent_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    owner_address: Mapped[str] = mapped_column(String(42), nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    agent_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    registered_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_registered_agents_wallet", "wallet_address"),)
