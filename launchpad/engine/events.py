"""
launchpad.engine.events — ChainEvent and JobEnvelope
=====================================================

Normalized envelopes that cross the queue boundary.  The chain reader
turns raw logs into :class:`ChainEvent`; every queued job carries a
:class:`JobEnvelope`.  Both round-trip through plain dicts so they can be
stored in the ``jobs.payload`` JSON column.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from launchpad.errors import ErrorCode, LaunchpadError

__all__ = ["ChainEvent", "ChainEventKind", "JobEnvelope", "TradeSide"]


class ChainEventKind(enum.StrEnum):
    TRADE = "TRADE"
    PAIR_CREATED = "PAIR_CREATED"
    GRADUATED = "GRADUATED"


class TradeSide(enum.StrEnum):
    BUY = "buy"
    SELL = "sell"


# ---------------------------------------------------------------------------
# ChainEvent — one normalized on-chain log
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChainEvent:
    """Normalized token/DEX event.

    ``payload`` by kind:
      * TRADE — ``side``, ``amount_in``, ``amount_out``, ``trader``,
        ``price`` (quote units per token, as a decimal string)
      * PAIR_CREATED — ``pair_address``
      * GRADUATED — empty
    """

    kind: ChainEventKind
    token_id: int
    block_number: int
    tx_hash: str
    log_index: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return f"{self.token_id}:{self.tx_hash.lower()}:{self.kind.value}:{self.log_index}"

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.block_number, self.log_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "token_id": self.token_id,
            "block_number": self.block_number,
            "tx_hash": self.tx_hash,
            "log_index": self.log_index,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ChainEvent:
        try:
            return cls(
                kind=ChainEventKind(raw["kind"]),
                token_id=int(raw["token_id"]),
                block_number=int(raw["block_number"]),
                tx_hash=str(raw["tx_hash"]),
                log_index=int(raw.get("log_index", 0)),
                payload=dict(raw.get("payload") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Malformed chain event: {raw!r}", exc)


# ---------------------------------------------------------------------------
# JobEnvelope — the conceptual job payload schema
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class JobEnvelope:
    """``{type, dao_id, attempt, scheduled_at, data}`` view of a queued job."""

    type: str
    dao_id: str | None = None
    attempt: int = 0
    scheduled_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "dao_id": self.dao_id,
            "attempt": self.attempt,
            "scheduled_at": self.scheduled_at.isoformat(),
            "data": dict(self.data),
        }
