"""Initial schema for discovery, metrics, checkpoints, scores and replies.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Discovered agents table
    op.create_table(
        "discovered_agents",
        sa.Column("handle", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("post_count", sa.Integer(), nullable=False),
        sa.Column("wallet_requested", sa.Boolean(), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("handle"),
    )
    op.create_index("idx_discovered_agents_wallet", "discovered_agents", ["wallet_address"])
    op.create_index("idx_discovered_agents_last_activity", "discovered_agents", ["last_activity_at"])

    # Per-wallet cumulative counters
    op.create_table(
        "wallet_metrics",
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("tasks_completed", sa.Integer(), nullable=False),
        sa.Column("tasks_failed", sa.Integer(), nullable=False),
        sa.Column("disputes", sa.Integer(), nullable=False),
        sa.Column("slashes", sa.Integer(), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("wallet_address"),
    )

    # Scan checkpoints table
    op.create_table(
        "scan_checkpoints",
        sa.Column("source_key", sa.String(128), nullable=False),
        sa.Column("last_processed_height", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("source_key"),
    )

    # Scored agents table
    op.create_table(
        "scored_agents",
        sa.Column("handle", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(32), nullable=False),
        sa.Column("previous_score", sa.Integer(), nullable=True),
        sa.Column("scoring_mode", sa.String(16), nullable=False),
        sa.Column("completion_rate", sa.Float(), nullable=False),
        sa.Column("tasks_completed", sa.Integer(), nullable=False),
        sa.Column("tasks_failed", sa.Integer(), nullable=False),
        sa.Column("disputes", sa.Integer(), nullable=False),
        sa.Column("slashes", sa.Integer(), nullable=False),
        sa.Column("age_days", sa.Integer(), nullable=False),
        sa.Column("components", sa.JSON(), nullable=True),
        sa.Column("data_completeness", sa.Float(), nullable=True),
        sa.Column("has_onchain_data", sa.Boolean(), nullable=False),
        sa.Column("has_financial_data", sa.Boolean(), nullable=False),
        sa.Column("has_debate_data", sa.Boolean(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("handle"),
    )
    op.create_index("idx_scored_agents_score", "scored_agents", ["score"])

    # Reply records table
    op.create_table(
        "reply_records",
        sa.Column("handle", sa.String(64), nullable=False),
        sa.Column("replied_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("post_id", sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint("handle"),
    )
    op.create_index("idx_reply_records_replied_at", "reply_records", ["replied_at"])

    # Identity-registry registrations
    op.create_table(
        "registered_agents",
        sa.Column("agent_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("owner_address", sa.String(42), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("agent_uri", sa.Text(), nullable=True),
        sa.Column("registered_block", sa.BigInteger(), nullable=True),
        sa.Column("discovered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("agent_id"),
    )
    op.create_index("idx_registered_agents_wallet", "registered_agents", ["wallet_address"])


def downgrade() -> None:
    op.drop_index("idx_registered_agents_wallet", table_name="registered_agents")
    op.drop_table("registered_agents")
    op.drop_index("idx_reply_records_replied_at", table_name="reply_records")
    op.drop_table("reply_records")
    op.drop_index("idx_scored_agents_score", table_name="scored_agents")
    op.drop_table("scored_agents")
    op.drop_table("scan_checkpoints")
    op.drop_table("wallet_metrics")
    op.drop_index("idx_discovered_agents_last_activity", table_name="discovered_agents")
    op.drop_index("idx_discovered_agents_wallet", table_name="discovered_agents")
    op.drop_table("discovered_agents")
