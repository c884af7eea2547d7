"""
launchpad.queue.job_queue — Durable Job Queue
==============================================

DB-backed, so queued work survives restarts and every worker process sees
the same queue without extra infrastructure.

Delivery model:
    1. ``enqueue`` inserts a ``jobs`` row (optionally deduplicated by key).
    2. ``dequeue`` leases the oldest due row with a compare-and-set
       UPDATE (``locked_by`` / ``locked_until``); only one consumer can
       win a given lease.
    3. ``ack`` deletes the row (recurring jobs are rescheduled instead).
    4. ``fail`` bumps ``attempt`` and reschedules with exponential backoff,
       or moves the job to ``dead_letter_jobs`` once the budget is spent.

A lease that expires without ack/fail (crashed or stuck worker) counts as
a failed attempt and the job becomes visible again.  Delivery is therefore
at-least-once: handlers must be idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from launchpad.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
    backoff_seconds,
)
from launchpad.database.engine import get_session
from launchpad.database.models import DeadLetterJob, Job, QueueState
from launchpad.engine.events import JobEnvelope
from launchpad.errors import ErrorCode, LaunchpadError

logger = logging.getLogger(__name__)

# Payload key that marks a recurring job and holds its period in seconds
RECURRING_KEY = "_every"

# How many due rows a consumer looks at per dequeue attempt
_DEQUEUE_BATCH = 5


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def envelope_of(job: Job) -> JobEnvelope:
    data = {k: v for k, v in (job.payload or {}).items() if k != RECURRING_KEY}
    return JobEnvelope(
        type=job.type,
        dao_id=job.dao_id,
        attempt=job.attempt,
        scheduled_at=_aware(job.scheduled_at),
        data=data,
    )


class JobQueue:
    """Named queues over the ``jobs`` table.

    Parameters
    ----------
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_cap: float = DEFAULT_BACKOFF_CAP_SECONDS,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.engine = engine
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.visibility_timeout = visibility_timeout
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------
    # Producers
    # -------------------------------------------------------------------
    def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        *,
        dao_id: str | None = None,
        delay: float = 0.0,
        dedup_key: str | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Add a job and return its id.

        With a *dedup_key*, enqueueing while an equal-keyed job is still
        pending returns the existing job's id instead of adding a new one.
        A job that is already leased has started its work, so it gives up
        the key and the new job is added behind it.  Recurring jobs always
        keep their key.
        """
        now = self.now()
        with get_session(self.engine) as session:
            if dedup_key is not None:
                existing = session.scalar(
                    select(Job).where(Job.queue == queue, Job.dedup_key == dedup_key)
                )
                if existing is not None:
                    locked_until = _aware(existing.locked_until)
                    in_flight = locked_until is not None and locked_until > now
                    if not in_flight or (existing.payload or {}).get(RECURRING_KEY):
                        logger.debug("[%s] %s already queued as %s", queue, dedup_key, existing.id)
                        return existing.id
                    session.execute(
                        update(Job)
                        .where(Job.id == existing.id, Job.dedup_key == dedup_key)
                        .values(dedup_key=None)
                    )
                    logger.debug("[%s] %s in flight as %s; queueing another", queue, dedup_key, existing.id)

            job = Job(
                queue=queue,
                type=job_type,
                dao_id=dao_id,
                payload=payload or {},
                attempt=0,
                max_attempts=max_attempts or self.max_attempts,
                scheduled_at=self.now() + timedelta(seconds=delay),
                dedup_key=dedup_key,
            )
            try:
                with session.begin_nested():
                    session.add(job)
                    session.flush()
            except IntegrityError:
                # Lost a race with another producer using the same key
                existing = session.scalar(
                    select(Job.id).where(Job.queue == queue, Job.dedup_key == dedup_key)
                )
                if existing is None:
                    raise
                return existing

            logger.debug("[%s] enqueued %s %s (delay=%.1fs)", queue, job_type, job.id, delay)
            return job.id

    def ensure_recurring(
        self,
        queue: str,
        job_type: str,
        every: float,
        payload: dict[str, Any] | None = None,
        *,
        delay: float = 0.0,
    ) -> str:
        """Register a job that reruns every *every* seconds.

        Idempotent: at most one pending instance per ``(queue, job_type)``.
        """
        data = dict(payload or {})
        data[RECURRING_KEY] = every
        return self.enqueue(
            queue, job_type, data, delay=delay, dedup_key=f"recurring:{job_type}"
        )

    # -------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------
    def dequeue(self, queue: str, worker_id: str) -> Job | None:
        """Lease the oldest due job on *queue*, or return None."""
        if self.is_paused(queue):
            return None

        now = self.now()
        with get_session(self.engine) as session:
            candidates = session.scalars(
                select(Job)
                .where(
                    Job.queue == queue,
                    Job.scheduled_at <= now,
                    or_(Job.locked_until.is_(None), Job.locked_until <= now),
                )
                .order_by(Job.scheduled_at, Job.created_at)
                .limit(_DEQUEUE_BATCH)
            ).all()
            candidate_ids = [(c.id, c.locked_until is not None) for c in candidates]

        for job_id, lease_expired in candidate_ids:
            if lease_expired and not self._reap_expired_lease(job_id, now):
                continue
            leased = self._try_lease(job_id, worker_id, now)
            if leased is not None:
                return leased
        return None

    def _try_lease(self, job_id: str, worker_id: str, now: datetime) -> Job | None:
        with get_session(self.engine) as session:
            result = session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    or_(Job.locked_until.is_(None), Job.locked_until <= now),
                )
                .values(
                    locked_by=worker_id,
                    locked_until=now + timedelta(seconds=self.visibility_timeout),
                )
            )
            if result.rowcount != 1:
                return None
            job = session.get(Job, job_id, populate_existing=True)
            logger.debug("[%s] %s leased %s (%s)", job.queue, worker_id, job.id, job.type)
            return job

    def _reap_expired_lease(self, job_id: str, now: datetime) -> bool:
        """Count an expired lease as a failed attempt.

        Returns True if the job is still deliverable.  The reap is a
        compare-and-set on ``attempt``: a consumer holding a stale view of
        the row loses to whoever reaped (and possibly re-leased) it first.
        """
        with get_session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                return False
            locked_until = _aware(job.locked_until)
            if locked_until is None or locked_until > now:
                return locked_until is None
            expired_holder, observed_attempt = job.locked_by, job.attempt

            result = session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.attempt == observed_attempt,
                    Job.locked_until.is_not(None),
                    Job.locked_until <= now,
                )
                .values(
                    attempt=observed_attempt + 1,
                    last_error=f"{ErrorCode.INTERNAL_ERROR.value}::lease expired",
                    locked_by=None,
                    locked_until=None,
                )
            )
            if result.rowcount != 1:
                logger.debug("[%s] expired lease on %s already reaped", job.queue, job_id)
                return False

            logger.warning(
                "[%s] lease on %s held by %s expired", job.queue, job_id, expired_holder
            )
            job = session.get(Job, job_id, populate_existing=True)
            if job.attempt >= job.max_attempts:
                self._dead_letter(session, job, ErrorCode.INTERNAL_ERROR)
                return False
            return True

    def _owned(self, job: Job, worker_id: str | None) -> bool:
        if worker_id is None or job.locked_by in (None, worker_id):
            return True
        logger.warning(
            "[%s] %s no longer owns %s (leased by %s); ignoring",
            job.queue, worker_id, job.id, job.locked_by,
        )
        return False

    def ack(self, job_id: str, worker_id: str | None = None) -> None:
        """Mark a job done: delete it, or reschedule if recurring."""
        with get_session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None or not self._owned(job, worker_id):
                return
            every = (job.payload or {}).get(RECURRING_KEY)
            if every:
                job.attempt = 0
                job.last_error = None
                job.locked_by = None
                job.locked_until = None
                job.scheduled_at = self.now() + timedelta(seconds=float(every))
            else:
                session.delete(job)

    def release(self, job_id: str, delay: float = 0.0, worker_id: str | None = None) -> None:
        """Give a job back without consuming an attempt."""
        with get_session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None or not self._owned(job, worker_id):
                return
            job.locked_by = None
            job.locked_until = None
            job.scheduled_at = self.now() + timedelta(seconds=delay)
            logger.info("[%s] released %s for %.1fs", job.queue, job.id, delay)

    def fail(
        self,
        job_id: str,
        reason: str,
        *,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        retryable: bool = True,
        retry_after: float | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Record a failed attempt.  Returns True if the job was dead-lettered.

        Retry delay is ``min(base * 2**n, cap)`` where *n* is the number of
        earlier failures, stretched to *retry_after* when the upstream
        asked us to wait longer.
        """
        with get_session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None or not self._owned(job, worker_id):
                return False

            previous_failures = job.attempt
            job.attempt += 1
            job.last_error = reason[:2000]
            job.locked_by = None
            job.locked_until = None

            if retryable and job.attempt < job.max_attempts:
                delay = backoff_seconds(previous_failures, self.backoff_base, self.backoff_cap)
                if retry_after:
                    delay = max(delay, retry_after)
                job.scheduled_at = self.now() + timedelta(seconds=delay)
                logger.warning(
                    "[%s] %s (%s) failed attempt %d/%d, retry in %.1fs: %s",
                    job.queue, job.id, job.type, job.attempt, job.max_attempts, delay, reason,
                )
                return False

            self._dead_letter(session, job, error_code)
            return True

    def _dead_letter(self, session, job: Job, error_code: ErrorCode) -> None:
        """Move *job* to the dead-letter table exactly once."""
        every = (job.payload or {}).get(RECURRING_KEY)
        # Recurring jobs keep their row id across runs, so key each parked run
        dead_id = f"{job.id}@{self.now().isoformat()}" if every else job.id
        try:
            with session.begin_nested():
                session.add(DeadLetterJob(
                    job_id=dead_id,
                    queue=job.queue,
                    type=job.type,
                    dao_id=job.dao_id,
                    payload=job.payload or {},
                    attempts=job.attempt,
                    error_code=error_code.value,
                    last_error=job.last_error,
                ))
                session.flush()
        except IntegrityError:
            logger.warning("[%s] %s already dead-lettered", job.queue, job.id)

        if every:
            # Keep the schedule alive; only this run is parked for inspection
            job.attempt = 0
            job.scheduled_at = self.now() + timedelta(seconds=float(every))
        else:
            session.delete(job)
        logger.critical(
            "[%s] job %s (%s, dao=%s) dead-lettered after %d attempt(s): %s",
            job.queue, job.id, job.type, job.dao_id, job.attempt, job.last_error,
        )

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def is_paused(self, queue: str) -> bool:
        with get_session(self.engine) as session:
            state = session.get(QueueState, queue)
            return bool(state and state.paused)

    def _set_paused(self, queue: str, paused: bool) -> None:
        with get_session(self.engine) as session:
            state = session.get(QueueState, queue)
            if state is None:
                session.add(QueueState(queue=queue, paused=paused))
            else:
                state.paused = paused
        logger.info("[%s] queue %s", queue, "paused" if paused else "resumed")

    def pause(self, queue: str) -> None:
        self._set_paused(queue, True)

    def resume(self, queue: str) -> None:
        self._set_paused(queue, False)

    def metrics(self, queue: str) -> dict[str, Any]:
        """Counts of waiting, delayed, active and dead jobs on *queue*."""
        now = self.now()
        with get_session(self.engine) as session:
            unlocked = or_(Job.locked_until.is_(None), Job.locked_until <= now)

            def _count(*conditions) -> int:
                return session.scalar(
                    select(func.count()).select_from(Job).where(Job.queue == queue, *conditions)
                ) or 0

            waiting = _count(Job.scheduled_at <= now, unlocked)
            delayed = _count(Job.scheduled_at > now, unlocked)
            active = _count(Job.locked_until > now)
            dead = session.scalar(
                select(func.count()).select_from(DeadLetterJob).where(DeadLetterJob.queue == queue)
            ) or 0

        return {
            "queue": queue,
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "dead": dead,
            "paused": self.is_paused(queue),
        }

    def dead_letters(self, queue: str | None = None, limit: int = 100) -> list[DeadLetterJob]:
        with get_session(self.engine) as session:
            q = select(DeadLetterJob).order_by(DeadLetterJob.failed_at.desc()).limit(limit)
            if queue is not None:
                q = q.where(DeadLetterJob.queue == queue)
            return list(session.scalars(q).all())

    def requeue_dead_letter(self, dead_letter_id: int) -> str:
        """Put a dead-lettered job back on its queue with a fresh budget."""
        with get_session(self.engine) as session:
            dead = session.get(DeadLetterJob, dead_letter_id)
            if dead is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"Dead letter {dead_letter_id} not found")
            queue, job_type, payload, dao_id = dead.queue, dead.type, dict(dead.payload), dead.dao_id
            session.execute(delete(DeadLetterJob).where(DeadLetterJob.id == dead_letter_id))

        if payload.get(RECURRING_KEY):
            # The schedule itself was never removed
            payload.pop(RECURRING_KEY)
        job_id = self.enqueue(queue, job_type, payload, dao_id=dao_id)
        logger.info("[%s] dead letter %d requeued as %s", queue, dead_letter_id, job_id)
        return job_id
