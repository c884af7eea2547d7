"""
launchpad.worker.__main__ — Entry point for ``python -m launchpad.worker``
==========================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the job queue and the external clients.
5. Build the services and register their job handlers.
6. Start the consumers (after the startup delay) and block until
   SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import os
import signal
import threading

from dotenv import load_dotenv

from launchpad.clients.chain import ChainEventReader, make_web3
from launchpad.clients.platform import platform_client_from_env
from launchpad.clients.price_feed import PriceFeedClient
from launchpad.config import load_config
from launchpad.database.engine import create_db_engine, init_db
from launchpad.queue.bootstrap import Pipeline
from launchpad.queue.job_queue import JobQueue
from launchpad.queue.worker import HandlerRegistry
from launchpad.services.contributor_service import ContributorService
from launchpad.services.dao_service import DaoService
from launchpad.services.market_service import MarketService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("launchpad")


def main() -> None:
    """Bootstrap and run the queue consumers."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — chain %d, %d consumer(s) per queue", cfg.chain_id, cfg.worker_concurrency)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Queue and clients.
    queue = JobQueue(
        engine,
        max_attempts=cfg.max_attempts,
        backoff_base=cfg.backoff_base_seconds,
        backoff_cap=cfg.backoff_cap_seconds,
        visibility_timeout=cfg.visibility_timeout_seconds,
    )
    platform_client = platform_client_from_env(cfg)
    price_feed = PriceFeedClient(
        cfg.chain_id,
        wrapped_native=cfg.wrapped_native_address,
        timeout=cfg.http_timeout_seconds,
    )

    reader = None
    rpc_url = os.getenv("CHAIN_RPC_URL")
    if rpc_url and cfg.launchpad_address:
        reader = ChainEventReader(
            make_web3(rpc_url),
            engine,
            chain_id=cfg.chain_id,
            contract_address=cfg.launchpad_address,
            confirmations=cfg.confirmations,
            chunk_size=cfg.block_chunk_size,
            start_block=cfg.start_block,
        )
    else:
        logger.warning("CHAIN_RPC_URL or launchpad_address not set — chain jobs disabled")

    # 5. Services and handlers.
    registry = HandlerRegistry()
    ContributorService(engine, platform_client, queue).register_handlers(registry)
    MarketService(
        engine,
        reader=reader,
        price_feed=price_feed,
        queue=queue,
        holder_rescan_limit=cfg.holder_rescan_limit,
    ).register_handlers(registry)
    DaoService(
        engine,
        reader=reader,
        queue=queue,
        token_lock_address=cfg.token_lock_address,
    ).register_handlers(registry)
    logger.info("Registered job types: %s", ", ".join(registry.types()))

    # 6. Run until signalled.
    pipeline = Pipeline(queue, registry, cfg)
    stop = threading.Event()

    def _on_signal(signum, frame) -> None:
        logger.info("Received signal %d — shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    starter = threading.Thread(target=pipeline.start_consumers, name="consumer-bootstrap", daemon=True)
    starter.start()
    stop.wait()

    pipeline.stop_consumers()
    platform_client.close()
    price_feed.close()
    engine.dispose()
    logger.info("Launchpad worker stopped")


if __name__ == "__main__":
    main()
