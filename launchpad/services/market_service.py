"""
launchpad.services.market_service — DEX/Market Worker
======================================================

Applies normalized chain events to per-token market state and runs the
periodic price and metric refreshes of the ``dex`` queue.

Idempotency: every applied event leaves a row in
``processed_chain_events`` written in the same transaction as its
effects.  A redelivered event hits the unique key inside a SAVEPOINT and
becomes a no-op, so at-least-once delivery never double-applies.

Ordering: a trade only moves ``last_trade_price`` when it is at or after
the last applied trade in ``(block_number, log_index)`` order, so
concurrent consumers cannot rewind the price.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from launchpad.constants import QUEUE_DEX, JobType
from launchpad.database.engine import get_session
from launchpad.database.models import (
    AssetToken,
    Dao,
    DaoStatus,
    DaoTokenInfo,
    Holder,
    ProcessedChainEvent,
)
from launchpad.engine import lifecycle
from launchpad.engine.events import ChainEvent, ChainEventKind, JobEnvelope
from launchpad.errors import ErrorCode, LaunchpadError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from launchpad.clients.chain import ChainEventReader
    from launchpad.clients.price_feed import PriceFeedClient
    from launchpad.queue.job_queue import JobQueue
    from launchpad.queue.worker import HandlerRegistry

logger = logging.getLogger(__name__)

# Wait before rescanning holders so a burst of trades coalesces into one job
HOLDER_RESCAN_DELAY_SECONDS = 30.0


def _asset_price(session: Session, info: DaoTokenInfo) -> Decimal | None:
    if not info.asset_address:
        return None
    asset = session.get(AssetToken, (info.chain_id, info.asset_address))
    if asset is None or not asset.is_valid:
        return None
    return Decimal(asset.price_usd or 0)


def _apply_usd_price(dao: Dao, price_usd: Decimal, supply: Decimal) -> None:
    dao.price_usd = price_usd
    dao.market_cap_usd = price_usd * Decimal(supply or 0)


class MarketService:
    """Chain-event application plus scheduled market refreshes.

    Parameters
    ----------
    reader:
        Needed for chain polling, holder rescans and graduated pricing.
    price_feed:
        Needed for ``dex-sync-asset-price``.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        reader: ChainEventReader | None = None,
        price_feed: PriceFeedClient | None = None,
        queue: JobQueue | None = None,
        holder_rescan_limit: int = 200,
    ) -> None:
        self.engine = engine
        self.reader = reader
        self.price_feed = price_feed
        self.queue = queue
        self.holder_rescan_limit = holder_rescan_limit

    # -------------------------------------------------------------------
    # Chain events
    # -------------------------------------------------------------------
    def handle_chain_event(self, event: ChainEvent) -> bool:
        """Apply *event* once.  Returns False if it was already applied.

        Raises
        ------
        LaunchpadError
            ``NOT_FOUND`` if the token is unknown, ``BAD_PARAMS`` for a
            trade without a usable price.
        """
        with get_session(self.engine) as session:
            info = session.get(DaoTokenInfo, event.token_id)
            if info is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"Token {event.token_id} not found")

            try:
                with session.begin_nested():
                    session.add(ProcessedChainEvent(
                        token_id=event.token_id,
                        tx_hash=event.tx_hash.lower(),
                        kind=event.kind.value,
                        log_index=event.log_index,
                        block_number=event.block_number,
                    ))
                    session.flush()
            except IntegrityError:
                logger.debug("Chain event %s already applied", event.dedup_key)
                return False

            dao = info.dao
            if event.kind == ChainEventKind.TRADE:
                self._apply_trade(session, info, dao, event)
            elif event.kind == ChainEventKind.PAIR_CREATED:
                pair = event.payload.get("pair_address")
                if info.pair_address is None and pair:
                    info.pair_address = pair
                    logger.info("Token %d pair created at %s", info.token_id, pair)
            elif event.kind == ChainEventKind.GRADUATED:
                if not info.is_graduated:
                    info.is_graduated = True
                    logger.info("Token %d graduated", info.token_id)
                if dao is not None:
                    lifecycle.advance(dao, DaoStatus.GRADUATED)

        if event.kind == ChainEventKind.TRADE and self.queue is not None:
            self.queue.enqueue(
                QUEUE_DEX,
                JobType.DEX_REBUILD_HOLDERS,
                {"token_id": event.token_id},
                delay=HOLDER_RESCAN_DELAY_SECONDS,
                dedup_key=f"rebuild-holders:{event.token_id}",
            )
        return True

    def _apply_trade(
        self, session: Session, info: DaoTokenInfo, dao: Dao | None, event: ChainEvent
    ) -> None:
        try:
            price = Decimal(str(event.payload["price"]))
        except (KeyError, ArithmeticError, ValueError) as exc:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Trade {event.dedup_key} has no price", exc)
        if price < 0:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Trade {event.dedup_key} has a negative price")

        last = (info.last_trade_block, info.last_trade_log_index or 0)
        if info.last_trade_block is None or (event.block_number, event.log_index) >= last:
            info.last_trade_price = price
            info.last_trade_block = event.block_number
            info.last_trade_log_index = event.log_index
            asset_usd = _asset_price(session, info)
            if dao is not None and asset_usd is not None and not info.is_graduated:
                _apply_usd_price(dao, price * asset_usd, info.circulating_supply)
        else:
            logger.debug(
                "Trade %s older than block %s; price kept", event.dedup_key, info.last_trade_block
            )

        trader = event.payload.get("trader")
        if trader:
            recent = [t for t in (info.recent_traders or []) if t != trader]
            recent.append(trader)
            # Reassign so the JSON column is marked dirty
            info.recent_traders = recent[-self.holder_rescan_limit:]

        if dao is not None:
            lifecycle.advance(dao, DaoStatus.LIVE)

    # -------------------------------------------------------------------
    # Holders
    # -------------------------------------------------------------------
    def rebuild_holders(self, token_id: int, addresses: list[str] | None = None) -> int:
        """Re-read balances for recently active addresses.  Returns holder_count.

        Only addresses seen in trades since the last rescan are queried
        (at most ``holder_rescan_limit``); rows for other wallets keep
        their last known balance.
        """
        if self.reader is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Holder rescan needs a chain reader")

        with get_session(self.engine) as session:
            info = session.get(DaoTokenInfo, token_id)
            if info is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"Token {token_id} not found")
            if not info.token_address:
                logger.warning("Token %d has no address yet; skipping holder rescan", token_id)
                return info.holder_count
            token_address = info.token_address
            targets = list(addresses if addresses is not None else info.recent_traders or [])

        targets = list(dict.fromkeys(targets))[-self.holder_rescan_limit:]
        balances = {addr: self.reader.balance_of(token_address, addr) for addr in targets}

        with get_session(self.engine) as session:
            info = session.get(DaoTokenInfo, token_id)
            for address, balance in balances.items():
                row = session.get(Holder, (token_id, address))
                if balance <= 0:
                    if row is not None:
                        session.delete(row)
                elif row is None:
                    session.add(Holder(token_id=token_id, user_address=address, balance=Decimal(balance)))
                else:
                    row.balance = Decimal(balance)
            session.flush()

            info.holder_count = session.scalar(
                select(func.count()).select_from(Holder)
                .where(Holder.token_id == token_id, Holder.balance > 0)
            ) or 0
            info.recent_traders = [t for t in (info.recent_traders or []) if t not in balances]
            count = info.holder_count

        logger.info("Token %d: rescanned %d address(es), %d holder(s)", token_id, len(balances), count)
        return count

    # -------------------------------------------------------------------
    # Scheduled refreshes
    # -------------------------------------------------------------------
    def sync_asset_prices(self) -> int:
        """Refresh USD prices of allowed asset tokens.  Returns rows updated."""
        if self.price_feed is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Asset price sync needs a price feed")

        with get_session(self.engine) as session:
            assets = [
                (a.chain_id, a.address)
                for a in session.scalars(select(AssetToken).where(AssetToken.is_allowed.is_(True))).all()
            ]

        prices: dict[tuple[int, str], Decimal] = {}
        failures = 0
        for key in assets:
            try:
                price = self.price_feed.fetch_token_price_usd(key[1])
            except LaunchpadError as exc:
                failures += 1
                logger.warning("Price refresh for %s failed: %s", key[1], exc)
                continue
            if price is not None:
                prices[key] = price

        if assets and failures == len(assets):
            raise LaunchpadError(ErrorCode.INTERNAL_ERROR, "Price feed failed for every asset")

        with get_session(self.engine) as session:
            for key, price in prices.items():
                asset = session.get(AssetToken, key)
                if asset is not None:
                    asset.price_usd = price

        logger.info("Asset prices: %d/%d updated", len(prices), len(assets))
        return len(prices)

    def sync_launching_metrics(self) -> int:
        """Re-derive USD price and market cap of bonding-curve DAOs."""
        updated = 0
        with get_session(self.engine) as session:
            infos = session.scalars(
                select(DaoTokenInfo).where(
                    DaoTokenInfo.is_graduated.is_(False),
                    DaoTokenInfo.last_trade_price.is_not(None),
                )
            ).all()
            for info in infos:
                asset_usd = _asset_price(session, info)
                if info.dao is None or asset_usd is None:
                    continue
                _apply_usd_price(info.dao, Decimal(info.last_trade_price) * asset_usd, info.circulating_supply)
                updated += 1
        logger.info("Launching metrics refreshed for %d DAO(s)", updated)
        return updated

    def sync_graduated_metrics(self) -> int:
        """Price graduated DAOs from their DEX pair's spot price and on-chain supply."""
        if self.reader is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Graduated metrics need a chain reader")

        with get_session(self.engine) as session:
            targets = [
                (info.token_id, info.pair_address, info.token_address)
                for info in session.scalars(
                    select(DaoTokenInfo).where(
                        DaoTokenInfo.is_graduated.is_(True),
                        DaoTokenInfo.pair_address.is_not(None),
                        DaoTokenInfo.token_address.is_not(None),
                    )
                ).all()
            ]

        spot: dict[int, tuple[Decimal, Decimal]] = {}
        for token_id, pair, token in targets:
            price = self.reader.pair_spot_price(pair, token)
            if price is not None:
                spot[token_id] = (price, self.reader.total_supply(token))

        updated = 0
        with get_session(self.engine) as session:
            for token_id, (price, supply) in spot.items():
                info = session.get(DaoTokenInfo, token_id)
                info.total_supply = supply
                asset_usd = _asset_price(session, info)
                if info.dao is None or asset_usd is None:
                    continue
                _apply_usd_price(info.dao, price * asset_usd, supply)
                updated += 1
        logger.info("Graduated metrics refreshed for %d DAO(s)", updated)
        return updated

    def poll_chain(self) -> int:
        if self.reader is None or self.queue is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Chain polling needs a reader and a queue")
        return self.reader.publish_new_events(self.queue)

    # -------------------------------------------------------------------
    # Job handlers
    # -------------------------------------------------------------------
    def handle_event_job(self, job: JobEnvelope) -> None:
        self.handle_chain_event(ChainEvent.from_dict(job.data))

    def handle_rebuild_holders(self, job: JobEnvelope) -> None:
        try:
            token_id = int(job.data["token_id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, "rebuild-holders job without token_id", exc)
        self.rebuild_holders(token_id)

    def register_handlers(self, registry: HandlerRegistry) -> None:
        registry.register(JobType.DEX_EVENT, self.handle_event_job)
        registry.register(JobType.DEX_SYNC_LAUNCHING_METRICS, lambda job: self.sync_launching_metrics())
        if self.reader is not None:
            registry.register(JobType.DEX_REBUILD_HOLDERS, self.handle_rebuild_holders)
            registry.register(JobType.DEX_SYNC_GRADUATED_METRICS, lambda job: self.sync_graduated_metrics())
            if self.queue is not None:
                registry.register(JobType.DEX_POLL_CHAIN, lambda job: self.poll_chain())
        if self.price_feed is not None:
            registry.register(JobType.DEX_SYNC_ASSET_PRICE, lambda job: self.sync_asset_prices())
