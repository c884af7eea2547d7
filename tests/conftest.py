"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid SESSION_JWT_SECRET is always set for test runs.
# This must happen before any import of launchpad.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("SESSION_JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from launchpad.database.models import (  # noqa: E402
    AssetToken,
    Base,
    Dao,
    DaoPlatform,
    DaoStatus,
    DaoTokenInfo,
)
from launchpad.queue.job_queue import JobQueue  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all launchpad tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN, so a SAVEPOINT issued outside a transaction
    # would commit on RELEASE; emit BEGIN ourselves (SQLAlchemy's
    # documented pysqlite SAVEPOINT recipe).
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Controllable clock
# ---------------------------------------------------------------------------
class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_queue(db_engine, clock) -> JobQueue:
    return JobQueue(
        db_engine,
        max_attempts=5,
        backoff_base=5.0,
        backoff_cap=600.0,
        visibility_timeout=300,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
ASSET_ADDRESS = "0x55d398326f99059fF775485246999027B3197955"
TOKEN_ADDRESS = "0x1111111111111111111111111111111111111111"


def seed_dao(
    engine,
    *,
    dao_id: str = "dao-1",
    url: str = "https://github.com/acme/rocket",
    platform: DaoPlatform = DaoPlatform.GITHUB,
    status: DaoStatus = DaoStatus.PRE_LAUNCH,
    token_id: int | None = None,
) -> str:
    """Insert a DAO row and return its id."""
    with Session(engine) as session:
        session.add(Dao(
            id=dao_id,
            name=f"DAO {dao_id}",
            ticker="RKT",
            url=url,
            platform=platform,
            status=status,
            token_id=token_id,
            created_by="0x000000000000000000000000000000000000dEaD",
        ))
        session.commit()
    return dao_id


def seed_token(
    engine,
    *,
    token_id: int = 7,
    asset_price: Decimal | None = Decimal("2"),
    circulating_supply: Decimal = Decimal("1000"),
    total_supply: Decimal = Decimal("5000"),
    **fields,
) -> int:
    """Insert a DaoTokenInfo (and its quote asset) and return the token id."""
    with Session(engine) as session:
        if asset_price is not None and session.get(AssetToken, (56, ASSET_ADDRESS)) is None:
            session.add(AssetToken(
                chain_id=56, address=ASSET_ADDRESS, symbol="USDT", decimals=18, price_usd=asset_price,
            ))
        session.add(DaoTokenInfo(
            token_id=token_id,
            chain_id=56,
            token_address=fields.pop("token_address", TOKEN_ADDRESS),
            asset_address=ASSET_ADDRESS,
            circulating_supply=circulating_supply,
            total_supply=total_supply,
            **fields,
        ))
        session.commit()
    return token_id
