"""Initial launchpad schema

Revision ID: 0a1c5e7d9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7d9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TOKEN_AMOUNT = sa.Numeric(78, 0)
USD_AMOUNT = sa.Numeric(38, 18)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=True,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create DAO, contributor, market and job-queue tables."""
    op.create_table(
        "dao_token_infos",
        sa.Column("token_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=True),
        sa.Column("asset_address", sa.String(42), nullable=True),
        sa.Column("total_supply", USD_AMOUNT, nullable=True),
        sa.Column("circulating_supply", USD_AMOUNT, nullable=True),
        sa.Column("last_trade_price", USD_AMOUNT, nullable=True),
        sa.Column("last_trade_block", sa.BigInteger(), nullable=True),
        sa.Column("last_trade_log_index", sa.Integer(), nullable=True),
        sa.Column("pair_address", sa.String(42), nullable=True),
        sa.Column("is_graduated", sa.Boolean(), nullable=True),
        sa.Column("unlock_ratio", sa.Float(), nullable=True),
        sa.Column("holder_count", sa.Integer(), nullable=True),
        sa.Column("recent_traders", postgresql.JSONB(), nullable=True),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_dao_token_infos_address", "dao_token_infos", ["chain_id", "token_address"]
    )

    op.create_table(
        "daos",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("url", sa.String(300), nullable=False, unique=True),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column(
            "token_id",
            sa.BigInteger(),
            sa.ForeignKey("dao_token_infos.token_id"),
            nullable=True,
            unique=True,
        ),
        sa.Column("market_cap_usd", USD_AMOUNT, nullable=True),
        sa.Column("price_usd", USD_AMOUNT, nullable=True),
        sa.Column("created_by", sa.String(42), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_daos_status", "daos", ["status"])

    op.create_table(
        "asset_tokens",
        sa.Column("chain_id", sa.Integer(), primary_key=True),
        sa.Column("address", sa.String(42), primary_key=True),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=True),
        sa.Column("price_usd", USD_AMOUNT, nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=True),
        sa.Column("is_allowed", sa.Boolean(), nullable=True),
    )

    op.create_table(
        "contributors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "dao_id",
            sa.String(36),
            sa.ForeignKey("daos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("user_platform_id", sa.String(255), nullable=False),
        sa.Column("user_platform_name", sa.String(100), nullable=False),
        sa.Column("user_platform_avatar", sa.String(300), nullable=True),
        sa.Column("snapshot_value", sa.Float(), nullable=True),
        sa.Column("user_address", sa.String(42), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("dao_id", "user_platform_id", name="uq_contributors_dao_user"),
    )
    op.create_index(
        "ix_contributors_platform_user", "contributors", ["platform", "user_platform_id"]
    )
    op.create_index("ix_contributors_dao_value", "contributors", ["dao_id", "snapshot_value"])

    op.create_table(
        "contributor_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "contributor_id",
            sa.Integer(),
            sa.ForeignKey("contributors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tag", sa.String(20), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_contributor_history_contributor",
        "contributor_history",
        ["contributor_id", "created_at"],
    )

    op.create_table(
        "holders",
        sa.Column(
            "token_id",
            sa.BigInteger(),
            sa.ForeignKey("dao_token_infos.token_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_address", sa.String(42), primary_key=True),
        sa.Column("balance", TOKEN_AMOUNT, nullable=True),
        _timestamp("updated_at"),
    )
    op.create_index("ix_holders_token_balance", "holders", ["token_id", "balance"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("queue", sa.String(50), nullable=False),
        sa.Column("type", sa.String(60), nullable=False),
        sa.Column("dao_id", sa.String(36), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=True),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(100), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("dedup_key", sa.String(200), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("queue", "dedup_key", name="uq_jobs_queue_dedup"),
    )
    op.create_index("ix_jobs_queue_scheduled", "jobs", ["queue", "scheduled_at"])

    op.create_table(
        "dead_letter_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(80), nullable=False, unique=True),
        sa.Column("queue", sa.String(50), nullable=False),
        sa.Column("type", sa.String(60), nullable=False),
        sa.Column("dao_id", sa.String(36), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error_code", sa.String(30), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("failed_at"),
    )
    op.create_index("ix_dead_letter_jobs_queue", "dead_letter_jobs", ["queue", "failed_at"])

    op.create_table(
        "queue_states",
        sa.Column("queue", sa.String(50), primary_key=True),
        sa.Column("paused", sa.Boolean(), nullable=True),
    )

    op.create_table(
        "chain_cursors",
        sa.Column("chain_id", sa.Integer(), primary_key=True),
        sa.Column("contract_address", sa.String(42), primary_key=True),
        sa.Column("last_block", sa.BigInteger(), nullable=False),
        _timestamp("updated_at"),
    )

    op.create_table(
        "processed_chain_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token_id", sa.BigInteger(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        _timestamp("processed_at"),
        sa.UniqueConstraint(
            "token_id", "tx_hash", "kind", "log_index",
            name="uq_processed_chain_events_key",
        ),
    )


def downgrade() -> None:
    """Drop every launchpad table."""
    op.drop_table("processed_chain_events")
    op.drop_table("chain_cursors")
    op.drop_table("queue_states")
    op.drop_index("ix_dead_letter_jobs_queue", table_name="dead_letter_jobs")
    op.drop_table("dead_letter_jobs")
    op.drop_index("ix_jobs_queue_scheduled", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_holders_token_balance", table_name="holders")
    op.drop_table("holders")
    op.drop_index("ix_contributor_history_contributor", table_name="contributor_history")
    op.drop_table("contributor_history")
    op.drop_index("ix_contributors_dao_value", table_name="contributors")
    op.drop_index("ix_contributors_platform_user", table_name="contributors")
    op.drop_table("contributors")
    op.drop_table("asset_tokens")
    op.drop_index("ix_daos_status", table_name="daos")
    op.drop_table("daos")
    op.drop_index("ix_dao_token_infos_address", table_name="dao_token_infos")
    op.drop_table("dao_token_infos")
