"""
tests/test_bootstrap.py — Consumer Registration Tests
======================================================
Tests the Pipeline: recurring schedule registration, idempotent consumer
start and clean shutdown.  The job queue is a MagicMock; no database.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from launchpad.config import LaunchpadConfig
from launchpad.constants import ALL_QUEUES, QUEUE_DEX, JobType
from launchpad.queue.bootstrap import Pipeline, recurring_schedule
from launchpad.queue.job_queue import JobQueue
from launchpad.queue.worker import HandlerRegistry


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def cfg() -> LaunchpadConfig:
    return LaunchpadConfig(startup_delay_seconds=0, poll_interval_seconds=0.01)


@pytest.fixture
def queue() -> MagicMock:
    mock = MagicMock(spec=JobQueue)
    mock.dequeue.return_value = None
    return mock


@pytest.fixture
def registry() -> HandlerRegistry:
    reg = HandlerRegistry()
    reg.register(JobType.DEX_SYNC_ASSET_PRICE, lambda envelope: None)
    reg.register(JobType.CONTRIBUTOR_SYNC, lambda envelope: None)
    return reg


@pytest.fixture
def pipeline(queue, registry, cfg):
    p = Pipeline(queue, registry, cfg)
    yield p
    p.stop_consumers(timeout=5)


# ===========================================================================
# Recurring schedule
# ===========================================================================
class TestSchedule:
    def test_every_periodic_job_listed(self, cfg):
        types = {job_type for _, job_type, _ in recurring_schedule(cfg)}
        assert JobType.CONTRIBUTOR_SYNC in types
        assert JobType.DEX_POLL_CHAIN in types
        assert JobType.DAO_UPDATE_GRADUATED_HOLDERS in types

    def test_only_registered_types_scheduled(self, pipeline, queue, cfg):
        assert pipeline.schedule_recurring() == 2
        queue.ensure_recurring.assert_any_call(
            QUEUE_DEX, JobType.DEX_SYNC_ASSET_PRICE, cfg.dex_sync_every
        )
        scheduled = {c.args[1] for c in queue.ensure_recurring.call_args_list}
        assert JobType.DEX_POLL_CHAIN not in scheduled


# ===========================================================================
# Start / stop
# ===========================================================================
class TestStartConsumers:
    def test_one_consumer_per_queue(self, pipeline):
        consumers = pipeline.start_consumers()
        assert sorted(c.queue_name for c in consumers) == sorted(ALL_QUEUES)
        assert all(c.is_alive for c in consumers)

    def test_concurrency_setting(self, queue, registry):
        cfg = LaunchpadConfig(startup_delay_seconds=0, worker_concurrency=2, poll_interval_seconds=0.01)
        p = Pipeline(queue, registry, cfg, queues=(QUEUE_DEX,))
        try:
            assert len(p.start_consumers()) == 2
        finally:
            p.stop_consumers(timeout=5)

    def test_second_start_is_idempotent(self, pipeline, queue):
        first = pipeline.start_consumers()
        second = pipeline.start_consumers()
        assert [c.worker_id for c in first] == [c.worker_id for c in second]
        assert queue.ensure_recurring.call_count == 2

    def test_stop_joins_threads(self, pipeline):
        consumers = pipeline.start_consumers()
        pipeline.stop_consumers(timeout=5)
        assert pipeline.consumers == []
        assert not any(c.is_alive for c in consumers)

    def test_stop_during_startup_delay(self, queue, registry):
        cfg = LaunchpadConfig(startup_delay_seconds=30)
        p = Pipeline(queue, registry, cfg)
        result: list = []
        starter = threading.Thread(target=lambda: result.append(p.start_consumers()))
        starter.start()
        # Wait until the starter is parked inside the delay
        deadline = time.monotonic() + 5
        while not p._lock.locked() and time.monotonic() < deadline:
            time.sleep(0.01)
        p.stop_consumers(timeout=5)
        starter.join(timeout=5)

        assert not starter.is_alive()
        assert result == [[]]
        queue.ensure_recurring.assert_not_called()
