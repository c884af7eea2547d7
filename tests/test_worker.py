"""
tests/test_worker.py — Queue Consumer Dispatch Tests
=====================================================
Handler outcomes mapped onto ack / release / retry / dead-letter, driven
synchronously through ``QueueConsumer.run_once``.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from launchpad.clients.platform import CredentialUnavailable
from launchpad.database.models import Job
from launchpad.errors import ErrorCode, LaunchpadError
from launchpad.queue.worker import HandlerRegistry, QueueConsumer


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def consumer(job_queue, registry) -> QueueConsumer:
    return QueueConsumer(job_queue, "dex", registry, worker_id="test-worker")


def _job(engine, job_id: str) -> Job | None:
    with Session(engine) as session:
        return session.get(Job, job_id)


class TestHandlerRegistry:
    def test_register_and_get(self, registry):
        handler = lambda envelope: None  # noqa: E731
        registry.register("dex-event", handler)
        assert "dex-event" in registry
        assert registry.get("dex-event") is handler
        assert registry.types() == ["dex-event"]

    def test_unknown_type(self, registry):
        with pytest.raises(LaunchpadError) as exc_info:
            registry.get("nope")
        assert exc_info.value.code == ErrorCode.BAD_PARAMS


class TestRunOnce:
    def test_empty_queue(self, consumer):
        assert consumer.run_once() is False

    def test_success_acks(self, consumer, registry, job_queue, db_engine):
        seen = []
        registry.register("dex-event", lambda envelope: seen.append(envelope))
        job_id = job_queue.enqueue("dex", "dex-event", {"token_id": 7}, dao_id="dao-1")

        assert consumer.run_once() is True
        assert seen[0].data == {"token_id": 7}
        assert seen[0].dao_id == "dao-1"
        assert _job(db_engine, job_id) is None

    def test_transient_error_retries(self, consumer, registry, job_queue, db_engine):
        def handler(envelope):
            raise LaunchpadError(ErrorCode.RATE_LIMITED, "slow down", retry_after=90)

        registry.register("dex-event", handler)
        job_id = job_queue.enqueue("dex", "dex-event")

        consumer.run_once()
        job = _job(db_engine, job_id)
        assert job.attempt == 1
        assert job.last_error == "RATE_LIMITED::slow down"
        assert job.locked_by is None
        assert job_queue.dead_letters() == []

    def test_terminal_error_dead_letters(self, consumer, registry, job_queue, db_engine):
        def handler(envelope):
            raise LaunchpadError(ErrorCode.NOT_FOUND, "DAO dao-9 not found")

        registry.register("dex-event", handler)
        job_id = job_queue.enqueue("dex", "dex-event")

        consumer.run_once()
        assert _job(db_engine, job_id) is None
        dead = job_queue.dead_letters("dex")
        assert len(dead) == 1
        assert dead[0].error_code == "NOT_FOUND"

    def test_credential_unavailable_releases(self, consumer, registry, job_queue, db_engine, clock):
        def handler(envelope):
            raise CredentialUnavailable(wait_hint=30)

        registry.register("dex-event", handler)
        job_id = job_queue.enqueue("dex", "dex-event")

        consumer.run_once()
        job = _job(db_engine, job_id)
        assert job.attempt == 0
        assert job.locked_by is None
        assert consumer.run_once() is False
        clock.advance(30)
        assert consumer.run_once() is True

    def test_unexpected_exception_is_retryable(self, consumer, registry, job_queue, db_engine):
        def handler(envelope):
            raise ValueError("surprise")

        registry.register("dex-event", handler)
        job_id = job_queue.enqueue("dex", "dex-event")

        consumer.run_once()
        job = _job(db_engine, job_id)
        assert job.attempt == 1
        assert job.last_error == "INTERNAL_ERROR::surprise"

    def test_unknown_job_type_dead_letters(self, consumer, job_queue):
        job_queue.enqueue("dex", "mystery")
        consumer.run_once()
        dead = job_queue.dead_letters("dex")
        assert dead[0].type == "mystery"
        assert dead[0].error_code == "BAD_PARAMS"


class TestLifecycle:
    def test_start_and_stop(self, job_queue, registry):
        consumer = QueueConsumer(job_queue, "dex", registry, poll_interval=0.01)
        consumer.start()
        assert consumer.is_alive
        consumer.stop(timeout=5)
        assert not consumer.is_alive
