"""
launchpad.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- daos                   — Launched DAOs and their lifecycle status
- dao_token_infos        — Per-token market facts (supply, price, pair)
- asset_tokens           — Quote/settlement tokens accepted per chain
- contributors           — Per-(DAO, platform user) contribution snapshot
- contributor_history    — Append-only snapshot change journal
- holders                — Per-(token, wallet) balance snapshot (derived)
- jobs                   — Durable job queue rows with leases
- dead_letter_jobs       — Jobs that exhausted their retry budget
- queue_states           — Per-queue pause flag
- chain_cursors          — Last processed block per chain/contract
- processed_chain_events — Dedup ledger for applied chain events
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Launchpad ORM models."""


def _uuid() -> str:
    return str(uuid.uuid4())


# Token amounts are raw integers with up to 78 digits (uint256)
TokenAmount = Numeric(78, 0)
UsdAmount = Numeric(38, 18)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class DaoPlatform(enum.StrEnum):
    """Source-hosting platforms a DAO repository can live on."""
    GITHUB = "GITHUB"
    GITLAB = "GITLAB"


class DaoStatus(enum.StrEnum):
    """DAO lifecycle states.  Order of declaration is the lifecycle order."""
    PRE_LAUNCH = "PRE_LAUNCH"
    LAUNCHING = "LAUNCHING"
    LIVE = "LIVE"
    GRADUATED = "GRADUATED"


class HistoryTag(enum.StrEnum):
    """Why a contributor's snapshot value changed."""
    INITIAL = "INITIAL"
    SYNC = "SYNC"
    REMOVED = "REMOVED"


# ---------------------------------------------------------------------------
# Daos
# ---------------------------------------------------------------------------
class Dao(Base):
    __tablename__ = "daos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    url: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    platform: Mapped[DaoPlatform] = mapped_column(
        Enum(DaoPlatform, native_enum=False, length=20), nullable=False
    )
    status: Mapped[DaoStatus] = mapped_column(
        Enum(DaoStatus, native_enum=False, length=20),
        nullable=False,
        default=DaoStatus.PRE_LAUNCH,
    )
    token_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("dao_token_infos.token_id"), default=None, unique=True
    )
    market_cap_usd: Mapped[Decimal] = mapped_column(UsdAmount, default=0)
    price_usd: Mapped[Decimal] = mapped_column(UsdAmount, default=0)
    created_by: Mapped[str] = mapped_column(String(42), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    token_info: Mapped[DaoTokenInfo | None] = relationship(back_populates="dao")
    contributors: Mapped[list[Contributor]] = relationship(back_populates="dao")

    __table_args__ = (
        Index("ix_daos_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Dao id={self.id} ticker={self.ticker!r} status={self.status}>"


# ---------------------------------------------------------------------------
# DaoTokenInfo — per-token market facts written by the DEX worker
# ---------------------------------------------------------------------------
class DaoTokenInfo(Base):
    __tablename__ = "dao_token_infos"

    token_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    token_address: Mapped[str | None] = mapped_column(String(42), default=None)
    asset_address: Mapped[str | None] = mapped_column(String(42), default=None)
    total_supply: Mapped[Decimal] = mapped_column(UsdAmount, default=0)
    circulating_supply: Mapped[Decimal] = mapped_column(UsdAmount, default=0)
    last_trade_price: Mapped[Decimal | None] = mapped_column(UsdAmount, default=None)
    last_trade_block: Mapped[int | None] = mapped_column(BigInteger, default=None)
    last_trade_log_index: Mapped[int | None] = mapped_column(Integer, default=None)
    pair_address: Mapped[str | None] = mapped_column(String(42), default=None)
    is_graduated: Mapped[bool] = mapped_column(Boolean, default=False)
    unlock_ratio: Mapped[float | None] = mapped_column(Float, default=None)
    holder_count: Mapped[int] = mapped_column(Integer, default=0)
    recent_traders: Mapped[list | None] = mapped_column(JSONB, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    dao: Mapped[Dao | None] = relationship(back_populates="token_info")

    __table_args__ = (
        Index("ix_dao_token_infos_address", "chain_id", "token_address"),
    )

    def __repr__(self) -> str:
        return f"<DaoTokenInfo token={self.token_id} graduated={self.is_graduated}>"


# ---------------------------------------------------------------------------
# AssetToken — quote tokens (read-only to the market worker)
# ---------------------------------------------------------------------------
class AssetToken(Base):
    __tablename__ = "asset_tokens"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, default=18)
    price_usd: Mapped[Decimal] = mapped_column(UsdAmount, default=0)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    is_allowed: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<AssetToken {self.symbol} chain={self.chain_id}>"


# ---------------------------------------------------------------------------
# Contributors
# ---------------------------------------------------------------------------
class Contributor(Base):
    """One platform user's contribution snapshot for one DAO.

    Rows are never deleted; a contributor that disappears upstream is
    zeroed so its wallet binding and history survive.
    """
    __tablename__ = "contributors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dao_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("daos.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[DaoPlatform] = mapped_column(
        Enum(DaoPlatform, native_enum=False, length=20), nullable=False
    )
    user_platform_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_platform_name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_platform_avatar: Mapped[str | None] = mapped_column(String(300), default=None)
    snapshot_value: Mapped[float] = mapped_column(Float, default=0.0)
    user_address: Mapped[str | None] = mapped_column(String(42), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    dao: Mapped[Dao] = relationship(back_populates="contributors")
    history: Mapped[list[ContributorHistory]] = relationship(
        back_populates="contributor", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("dao_id", "user_platform_id", name="uq_contributors_dao_user"),
        Index("ix_contributors_platform_user", "platform", "user_platform_id"),
        Index("ix_contributors_dao_value", "dao_id", "snapshot_value"),
    )

    def __repr__(self) -> str:
        return (
            f"<Contributor dao={self.dao_id} user={self.user_platform_name!r} "
            f"value={self.snapshot_value}>"
        )


class ContributorHistory(Base):
    __tablename__ = "contributor_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contributor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contributors.id", ondelete="CASCADE"), nullable=False
    )
    tag: Mapped[HistoryTag] = mapped_column(
        Enum(HistoryTag, native_enum=False, length=20), nullable=False
    )
    value: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    contributor: Mapped[Contributor] = relationship(back_populates="history")

    __table_args__ = (
        Index("ix_contributor_history_contributor", "contributor_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Holders — derived, overwritten by bounded rescans
# ---------------------------------------------------------------------------
class Holder(Base):
    __tablename__ = "holders"

    token_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("dao_token_infos.token_id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(TokenAmount, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_holders_token_balance", "token_id", "balance"),
    )


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------
class Job(Base):
    """A queued unit of work.

    ``locked_by``/``locked_until`` form the lease: a job whose lease has
    expired is eligible for redelivery to another consumer.
    """
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    queue: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    dao_id: Mapped[str | None] = mapped_column(String(36), default=None)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_by: Mapped[str | None] = mapped_column(String(100), default=None)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)
    dedup_key: Mapped[str | None] = mapped_column(String(200), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("queue", "dedup_key", name="uq_jobs_queue_dedup"),
        Index("ix_jobs_queue_scheduled", "queue", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return f"<Job id={self.id} {self.queue}/{self.type} attempt={self.attempt}>"


class DeadLetterJob(Base):
    __tablename__ = "dead_letter_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    queue: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    dao_id: Mapped[str | None] = mapped_column(String(36), default=None)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    error_code: Mapped[str] = mapped_column(String(30), nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)
    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_dead_letter_jobs_queue", "queue", "failed_at"),
    )


class QueueState(Base):
    __tablename__ = "queue_states"

    queue: Mapped[str] = mapped_column(String(50), primary_key=True)
    paused: Mapped[bool] = mapped_column(Boolean, default=False)


# ---------------------------------------------------------------------------
# Chain reader bookkeeping
# ---------------------------------------------------------------------------
class ChainCursor(Base):
    __tablename__ = "chain_cursors"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProcessedChainEvent(Base):
    """Dedup ledger: one row per chain event the market worker applied."""
    __tablename__ = "processed_chain_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "token_id", "tx_hash", "kind", "log_index",
            name="uq_processed_chain_events_key",
        ),
    )
