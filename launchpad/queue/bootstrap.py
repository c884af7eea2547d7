"""
launchpad.queue.bootstrap — Consumer Registration
==================================================

:class:`Pipeline` owns the consumer threads for the ``contributor``,
``dex`` and ``dao`` queues and the recurring maintenance schedules.

``start_consumers()`` is idempotent: the first call waits the configured
startup delay, registers the recurring jobs and starts the threads; any
later (or concurrent) call returns the consumers already running.
"""

from __future__ import annotations

import logging
import threading

from launchpad.config import LaunchpadConfig
from launchpad.constants import ALL_QUEUES, QUEUE_CONTRIBUTOR, QUEUE_DAO, QUEUE_DEX, JobType
from launchpad.queue.job_queue import JobQueue
from launchpad.queue.worker import HandlerRegistry, QueueConsumer

logger = logging.getLogger(__name__)


def recurring_schedule(cfg: LaunchpadConfig) -> list[tuple[str, str, float]]:
    """``(queue, job_type, every_seconds)`` for every periodic job."""
    return [
        (QUEUE_CONTRIBUTOR, JobType.CONTRIBUTOR_SYNC, cfg.contributor_sync_every),
        (QUEUE_DEX, JobType.DEX_POLL_CHAIN, cfg.chain_poll_every),
        (QUEUE_DEX, JobType.DEX_SYNC_ASSET_PRICE, cfg.dex_sync_every),
        (QUEUE_DEX, JobType.DEX_SYNC_LAUNCHING_METRICS, cfg.dex_sync_every),
        (QUEUE_DEX, JobType.DEX_SYNC_GRADUATED_METRICS, cfg.dex_sync_every),
        (QUEUE_DAO, JobType.DAO_UPDATE_UNLOCK_RATIO, cfg.dao_maintenance_every),
        (QUEUE_DAO, JobType.DAO_UPDATE_GRADUATED_HOLDERS, cfg.dao_maintenance_every),
    ]


class Pipeline:
    """Starts and stops the queue consumers for one worker process."""

    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        cfg: LaunchpadConfig,
        *,
        queues: tuple[str, ...] = ALL_QUEUES,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.cfg = cfg
        self.queues = queues
        self._consumers: list[QueueConsumer] = []
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

    @property
    def consumers(self) -> list[QueueConsumer]:
        return list(self._consumers)

    def schedule_recurring(self) -> int:
        """Register periodic jobs whose handlers exist.  Returns the count."""
        count = 0
        for queue_name, job_type, every in recurring_schedule(self.cfg):
            if job_type not in self.registry:
                logger.info("No handler for %s; not scheduling it", job_type)
                continue
            self.queue.ensure_recurring(queue_name, job_type, every)
            count += 1
        return count

    def start_consumers(self) -> list[QueueConsumer]:
        with self._lock:
            if self._consumers:
                return list(self._consumers)

            if self.cfg.startup_delay_seconds > 0:
                logger.info("Starting consumers in %.0fs", self.cfg.startup_delay_seconds)
                if self._stop_event.wait(self.cfg.startup_delay_seconds):
                    return []

            scheduled = self.schedule_recurring()
            for queue_name in self.queues:
                for _ in range(max(1, self.cfg.worker_concurrency)):
                    consumer = QueueConsumer(
                        self.queue,
                        queue_name,
                        self.registry,
                        poll_interval=self.cfg.poll_interval_seconds,
                    )
                    consumer.start()
                    self._consumers.append(consumer)

            logger.info(
                "Started %d consumer(s) on %s; %d recurring job(s) scheduled",
                len(self._consumers), ", ".join(self.queues), scheduled,
            )
            return list(self._consumers)

    def stop_consumers(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        with self._lock:
            for consumer in self._consumers:
                consumer.stop(timeout=timeout)
            stopped = len(self._consumers)
            self._consumers = []
            self._stop_event.clear()
        if stopped:
            logger.info("Stopped %d consumer(s)", stopped)
