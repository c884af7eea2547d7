"""
launchpad.queue.worker — Queue Consumers
=========================================

One :class:`QueueConsumer` is a daemon thread polling a single named
queue.  Each leased job is dispatched by type through a
:class:`HandlerRegistry`; the outcome decides what happens to the job:

* handler returns           → ``ack``
* credential pool exhausted → ``release`` with a delay (no attempt used)
* transient error           → ``fail`` with backoff
* terminal error            → ``fail`` straight to the dead-letter list

A consumer never dies on a job error; only :meth:`QueueConsumer.stop`
ends its loop.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Callable

from launchpad.clients.platform import CredentialUnavailable
from launchpad.database.models import Job
from launchpad.engine.events import JobEnvelope
from launchpad.errors import ErrorCode, LaunchpadError, is_retryable
from launchpad.queue.job_queue import JobQueue, envelope_of

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobEnvelope], None]

# Fallback delay when a released job carries no wait hint
_RELEASE_DELAY_SECONDS = 5.0


class HandlerRegistry:
    """Maps job type strings to handler callables."""

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        if job_type in self._handlers:
            logger.warning("Replacing handler for job type %s", job_type)
        self._handlers[job_type] = handler

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def get(self, job_type: str) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"No handler for job type {job_type!r}")


class QueueConsumer:
    """Polling consumer thread for one named queue."""

    def __init__(
        self,
        queue: JobQueue,
        queue_name: str,
        registry: HandlerRegistry,
        *,
        worker_id: str | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.queue = queue
        self.queue_name = queue_name
        self.registry = registry
        self.worker_id = worker_id or f"{queue_name}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
        self.poll_interval = poll_interval
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"consumer-{self.worker_id}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("[%s] consumer %s did not stop in time", self.queue_name, self.worker_id)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        logger.info("[%s] consumer %s started", self.queue_name, self.worker_id)
        while not self._shutdown_event.is_set():
            try:
                processed = self.run_once()
            except Exception:
                # Database hiccup while leasing; keep polling
                logger.exception("[%s] consumer %s loop error", self.queue_name, self.worker_id)
                processed = False
            if not processed:
                self._shutdown_event.wait(self.poll_interval)
        logger.info("[%s] consumer %s stopped", self.queue_name, self.worker_id)

    # -------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------
    def run_once(self) -> bool:
        """Lease and process at most one job.  Returns True if one ran."""
        job = self.queue.dequeue(self.queue_name, self.worker_id)
        if job is None:
            return False
        self.process(job)
        return True

    def process(self, job: Job) -> None:
        envelope = envelope_of(job)
        logger.debug(
            "[%s] running %s %s (dao=%s, attempt=%d)",
            self.queue_name, job.type, job.id, job.dao_id, job.attempt,
        )
        try:
            handler = self.registry.get(job.type)
            handler(envelope)
        except CredentialUnavailable as exc:
            delay = max(exc.retry_after or 0.0, _RELEASE_DELAY_SECONDS)
            logger.info(
                "[%s] %s %s waiting for a platform credential", self.queue_name, job.type, job.id
            )
            self.queue.release(job.id, delay=delay, worker_id=self.worker_id)
            return
        except Exception as exc:
            error = LaunchpadError.from_exception(exc)
            retryable = is_retryable(error)
            if not isinstance(exc, LaunchpadError):
                logger.exception("[%s] %s %s raised", self.queue_name, job.type, job.id)
            elif not retryable:
                logger.error("[%s] %s %s terminal: %s", self.queue_name, job.type, job.id, error)
            self.queue.fail(
                job.id,
                str(error),
                error_code=error.code,
                retryable=retryable,
                retry_after=error.retry_after,
                worker_id=self.worker_id,
            )
            return

        self.queue.ack(job.id, worker_id=self.worker_id)
