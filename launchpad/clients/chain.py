"""
launchpad.clients.chain — Chain Event Reader
=============================================

Scans the launchpad contract's logs in bounded block chunks and yields
normalized :class:`~launchpad.engine.events.ChainEvent` objects in chain
order.  The last fully-handed-off block is persisted in ``chain_cursors``
so a restart resumes exactly where the previous run stopped: no gaps, and
no duplicates beyond the job queue's own at-least-once redelivery.

The reader never mutates DAO state.  :meth:`ChainEventReader.publish_new_events`
enqueues one ``dex-event`` job per event with the event's dedup key.

Also exposes the small read-only contract calls the market worker needs
for bounded holder rescans and graduated-pair pricing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine
from web3 import Web3

from launchpad.constants import QUEUE_DEX, JobType
from launchpad.database.engine import get_session
from launchpad.database.models import ChainCursor
from launchpad.engine.events import ChainEvent, ChainEventKind, TradeSide
from launchpad.errors import ErrorCode, LaunchpadError

if TYPE_CHECKING:
    from launchpad.queue.job_queue import JobQueue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ABIs (only the fragments we read)
# ---------------------------------------------------------------------------
LAUNCHPAD_EVENTS_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "name": "Trade",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": True, "name": "trader", "type": "address"},
            {"indexed": False, "name": "isBuy", "type": "bool"},
            {"indexed": False, "name": "amountIn", "type": "uint256"},
            {"indexed": False, "name": "amountOut", "type": "uint256"},
            {"indexed": False, "name": "price", "type": "uint256"},
        ],
    },
    {
        "anonymous": False,
        "name": "PairCreated",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": False, "name": "pair", "type": "address"},
        ],
    },
    {
        "anonymous": False,
        "name": "Graduated",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
    },
]

EVENT_SIGNATURES: dict[str, str] = {
    "Trade": "Trade(uint256,address,bool,uint256,uint256,uint256)",
    "PairCreated": "PairCreated(uint256,address)",
    "Graduated": "Graduated(uint256)",
}

EVENT_KINDS: dict[str, ChainEventKind] = {
    "Trade": ChainEventKind.TRADE,
    "PairCreated": ChainEventKind.PAIR_CREATED,
    "Graduated": ChainEventKind.GRADUATED,
}

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "totalSupply",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

UNISWAP_V3_POOL_ABI: list[dict[str, Any]] = [
    {
        "name": "slot0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
    },
    {
        "name": "token0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "token1",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

TOKEN_LOCK_ABI: list[dict[str, Any]] = [
    {
        "name": "unlockRatio",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "token", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Unlock ratios are reported in basis points
BPS_SCALE = 10_000

# Trade prices are emitted as 18-decimal fixed point
PRICE_SCALE = Decimal(10) ** 18
Q96 = Decimal(2) ** 96


def make_web3(rpc_url: str, timeout: float = 20.0) -> Web3:
    """HTTP provider with a bounded request timeout."""
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def topic0(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------
class ChainEventReader:
    """Restartable, chunked log reader for one launchpad contract."""

    def __init__(
        self,
        w3: Web3,
        engine: Engine,
        *,
        chain_id: int,
        contract_address: str,
        confirmations: int = 3,
        chunk_size: int = 2_000,
        start_block: int = 0,
    ) -> None:
        self.w3 = w3
        self.engine = engine
        self.chain_id = chain_id
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.confirmations = confirmations
        self.chunk_size = chunk_size
        self.start_block = start_block
        self.contract = w3.eth.contract(address=self.contract_address, abi=LAUNCHPAD_EVENTS_ABI)
        self._topic_to_name = {topic0(sig): name for name, sig in EVENT_SIGNATURES.items()}

    # -------------------------------------------------------------------
    # Cursor
    # -------------------------------------------------------------------
    def load_cursor(self) -> int:
        """Last block whose events were fully handed off (or start - 1)."""
        with get_session(self.engine) as session:
            row = session.get(ChainCursor, (self.chain_id, self.contract_address))
            return row.last_block if row else self.start_block - 1

    def save_cursor(self, block: int) -> None:
        with get_session(self.engine) as session:
            row = session.get(ChainCursor, (self.chain_id, self.contract_address))
            if row is None:
                session.add(ChainCursor(
                    chain_id=self.chain_id,
                    contract_address=self.contract_address,
                    last_block=block,
                ))
            elif block > row.last_block:
                row.last_block = block

    # -------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------
    def decode_log(self, log: Any) -> ChainEvent | None:
        """Turn a raw log into a ChainEvent; unknown topics return None."""
        topics = log["topics"]
        if not topics:
            return None
        name = self._topic_to_name.get(Web3.to_hex(topics[0]))
        if name is None:
            return None

        decoded = getattr(self.contract.events, name)().process_log(log)
        args = decoded["args"]
        kind = EVENT_KINDS[name]

        payload: dict[str, Any] = {}
        if kind == ChainEventKind.TRADE:
            payload = {
                "side": (TradeSide.BUY if args["isBuy"] else TradeSide.SELL).value,
                "amount_in": str(args["amountIn"]),
                "amount_out": str(args["amountOut"]),
                "trader": Web3.to_checksum_address(args["trader"]),
                "price": str(Decimal(args["price"]) / PRICE_SCALE),
            }
        elif kind == ChainEventKind.PAIR_CREATED:
            payload = {"pair_address": Web3.to_checksum_address(args["pair"])}

        return ChainEvent(
            kind=kind,
            token_id=int(args["tokenId"]),
            block_number=int(decoded["blockNumber"]),
            tx_hash=Web3.to_hex(decoded["transactionHash"]),
            log_index=int(decoded["logIndex"]),
            payload=payload,
        )

    def _fetch_range(self, from_block: int, to_block: int) -> list[ChainEvent]:
        logs = self.w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self.contract_address,
            "topics": [list(self._topic_to_name)],
        })
        events = [e for e in (self.decode_log(lg) for lg in logs) if e is not None]
        events.sort(key=lambda e: e.sort_key)
        return events

    # -------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------
    def iter_events(self, max_blocks: int | None = None) -> Iterator[ChainEvent]:
        """Lazily yield new events in chain order, chunk by chunk.

        The cursor for a chunk is saved only after the consumer has pulled
        every event of that chunk, so abandoning the iterator mid-chunk
        means those events are emitted again next time.
        """
        try:
            head = int(self.w3.eth.block_number) - self.confirmations
        except Exception as exc:
            raise LaunchpadError(ErrorCode.INTERNAL_ERROR, "Chain node unavailable", exc)

        start = self.load_cursor() + 1
        if max_blocks is not None:
            head = min(head, start + max_blocks - 1)
        current = start
        while current <= head:
            end = min(current + self.chunk_size - 1, head)
            events = self._fetch_range(current, end)
            yield from events
            self.save_cursor(end)
            logger.debug("Chain cursor → %d (%d events)", end, len(events))
            current = end + 1

    def publish_new_events(self, queue: JobQueue, max_blocks: int | None = None) -> int:
        """Enqueue a ``dex-event`` job per new event.  Returns the count."""
        published = 0
        for event in self.iter_events(max_blocks=max_blocks):
            queue.enqueue(
                QUEUE_DEX,
                JobType.DEX_EVENT,
                event.to_dict(),
                dedup_key=event.dedup_key,
            )
            published += 1
        if published:
            logger.info("Published %d chain event(s) to the %s queue", published, QUEUE_DEX)
        return published

    # -------------------------------------------------------------------
    # Read-only contract calls
    # -------------------------------------------------------------------
    def _erc20(self, token_address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    def balance_of(self, token_address: str, holder: str) -> int:
        return int(
            self._erc20(token_address).functions.balanceOf(
                Web3.to_checksum_address(holder)
            ).call()
        )

    def total_supply(self, token_address: str) -> Decimal:
        """Total supply in whole tokens (scaled by the token's decimals)."""
        token = self._erc20(token_address)
        raw = int(token.functions.totalSupply().call())
        decimals = int(token.functions.decimals().call())
        return Decimal(raw) / (Decimal(10) ** decimals)

    def pair_spot_price(self, pair_address: str, token_address: str) -> Decimal | None:
        """Uniswap-V3 spot price of *token_address* in the pair's other token.

        Returns None while the pool is uninitialized (``sqrtPriceX96 == 0``).
        """
        pool = self.w3.eth.contract(
            address=Web3.to_checksum_address(pair_address), abi=UNISWAP_V3_POOL_ABI
        )
        sqrt_price_x96 = pool.functions.slot0().call()[0]
        if sqrt_price_x96 == 0:
            return None
        token0 = pool.functions.token0().call()
        token1 = pool.functions.token1().call()
        decimals0 = int(self._erc20(token0).functions.decimals().call())
        decimals1 = int(self._erc20(token1).functions.decimals().call())

        # price of token0 denominated in token1, adjusted for decimals
        price = (Decimal(sqrt_price_x96) / Q96) ** 2
        price = price * (Decimal(10) ** decimals0) / (Decimal(10) ** decimals1)
        if token_address.lower() == str(token0).lower():
            return price
        return Decimal(1) / price

    def unlock_ratio(self, lock_address: str, token_address: str) -> float | None:
        """Unlocked fraction (0..1) recorded by the token-lock contract.

        Zero means the token has not been locked yet and yields None.
        """
        lock = self.w3.eth.contract(address=Web3.to_checksum_address(lock_address), abi=TOKEN_LOCK_ABI)
        bps = int(lock.functions.unlockRatio(Web3.to_checksum_address(token_address)).call())
        if bps == 0:
            return None
        return bps / BPS_SCALE
