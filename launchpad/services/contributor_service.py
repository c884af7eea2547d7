"""
launchpad.services.contributor_service — Contributor Sync & Wallet Binding
===========================================================================

Reconciles a DAO's contributor snapshot with its upstream repository and
exposes the read paths the rest of the platform uses.

Per-job flow (``SyncState``)::

    PENDING → FETCHING → MERGING → DONE
                  ╰──────────┴──────→ FAILED

* FETCHING — every contributor page is pulled through the platform
  client *before* any write happens.
* MERGING — one transaction: upsert per ``(dao_id, user_platform_id)``
  with ``snapshot_value = contributions``, zero rows that vanished
  upstream (never delete), journal real changes to
  ``contributor_history``, then compute the proof of contribution.

Replaying a sync against identical upstream data writes nothing.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from launchpad.clients.platform import (
    ContributorInfo,
    Pageable,
    PageableData,
    PlatformClient,
    RepoInfo,
    parse_repo_url,
)
from launchpad.constants import QUEUE_CONTRIBUTOR, JobType
from launchpad.database.engine import get_session
from launchpad.database.models import (
    Contributor,
    ContributorHistory,
    Dao,
    DaoPlatform,
    HistoryTag,
)
from launchpad.engine.events import JobEnvelope
from launchpad.engine.proof import ContributionShare, calculate_proof
from launchpad.errors import ErrorCode, LaunchpadError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from launchpad.queue.job_queue import JobQueue
    from launchpad.queue.worker import HandlerRegistry

logger = logging.getLogger(__name__)


class SyncState(enum.StrEnum):
    PENDING = "PENDING"
    FETCHING = "FETCHING"
    MERGING = "MERGING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(slots=True)
class SyncReport:
    """Outcome of one contributor sync."""

    dao_id: str
    state: SyncState = SyncState.PENDING
    upstream: int = 0
    created: int = 0
    updated: int = 0
    zeroed: int = 0
    unchanged: int = 0
    proof: list[ContributionShare] = field(default_factory=list)
    error: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.zeroed)


def _require_dao(session: Session, dao_id: str) -> Dao:
    dao = session.get(Dao, dao_id)
    if dao is None:
        raise LaunchpadError(ErrorCode.NOT_FOUND, f"DAO {dao_id} not found")
    return dao


def _ordered_contributors(dao_id: str):
    return (
        select(Contributor)
        .where(Contributor.dao_id == dao_id)
        .order_by(Contributor.snapshot_value.desc(), Contributor.id)
    )


def proof_for_rows(rows: list[Contributor]) -> list[ContributionShare]:
    """Proof of contribution keyed by platform user id."""
    return calculate_proof((row.user_platform_id, row.snapshot_value) for row in rows)


class ContributorService:
    def __init__(
        self,
        engine: Engine,
        client: PlatformClient,
        queue: JobQueue | None = None,
    ) -> None:
        self.engine = engine
        self.client = client
        self.queue = queue

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    def _move(self, report: SyncReport, state: SyncState) -> None:
        logger.debug("Contributor sync %s: %s → %s", report.dao_id, report.state, state)
        report.state = state

    def sync_contributors(self, dao_id: str) -> SyncReport:
        """Fetch upstream contributors for *dao_id* and merge them.

        Raises
        ------
        LaunchpadError
            ``NOT_FOUND`` for an unknown DAO, ``BAD_PARAMS`` for an
            unsupported repository URL, or whatever the platform client
            raised (``RATE_LIMITED`` / ``INTERNAL_ERROR``).
        """
        report = SyncReport(dao_id=dao_id)
        try:
            with get_session(self.engine) as session:
                url = _require_dao(session, dao_id).url

            meta = parse_repo_url(url)

            self._move(report, SyncState.FETCHING)
            upstream = self.client.fetch_all_contributors(meta.platform, meta.owner, meta.repo)
            report.upstream = len(upstream)

            self._move(report, SyncState.MERGING)
            with get_session(self.engine) as session:
                self._merge(session, dao_id, meta.platform, upstream, report)
                rows = session.scalars(_ordered_contributors(dao_id)).all()
                report.proof = proof_for_rows(list(rows))

            self._move(report, SyncState.DONE)
        except Exception as exc:
            self._move(report, SyncState.FAILED)
            report.error = str(exc)
            logger.warning("Contributor sync for DAO %s failed: %s", dao_id, exc)
            raise

        logger.info(
            "Contributor sync for DAO %s: %d upstream, %d new, %d changed, %d zeroed, %d unchanged",
            dao_id, report.upstream, report.created, report.updated, report.zeroed, report.unchanged,
        )
        if report.changed:
            self._notify_rewards_updated(report)
        return report

    def _merge(
        self,
        session: Session,
        dao_id: str,
        platform: DaoPlatform,
        upstream: list[ContributorInfo],
        report: SyncReport,
    ) -> None:
        existing: dict[str, Contributor] = {
            row.user_platform_id: row
            for row in session.scalars(
                select(Contributor).where(Contributor.dao_id == dao_id)
            ).all()
        }
        seen: set[str] = set()

        for info in upstream:
            value = float(info.contributions)
            if not math.isfinite(value) or value < 0:
                raise LaunchpadError(
                    ErrorCode.INTERNAL_ERROR,
                    f"Upstream reported {info.contributions!r} contributions for {info.id}",
                )
            seen.add(info.id)
            row = existing.get(info.id)

            if row is None:
                row = Contributor(
                    dao_id=dao_id,
                    platform=platform,
                    user_platform_id=info.id,
                    user_platform_name=info.name,
                    user_platform_avatar=info.avatar or None,
                    snapshot_value=value,
                )
                session.add(row)
                session.flush()
                session.add(ContributorHistory(
                    contributor_id=row.id, tag=HistoryTag.INITIAL, value=value
                ))
                existing[info.id] = row
                report.created += 1
                continue

            if row.user_platform_name != info.name:
                row.user_platform_name = info.name
            if info.avatar and row.user_platform_avatar != info.avatar:
                row.user_platform_avatar = info.avatar

            if row.snapshot_value != value:
                row.snapshot_value = value
                session.add(ContributorHistory(
                    contributor_id=row.id, tag=HistoryTag.SYNC, value=value
                ))
                report.updated += 1
            else:
                report.unchanged += 1

        for platform_id, row in existing.items():
            if platform_id in seen or row.snapshot_value == 0:
                continue
            row.snapshot_value = 0.0
            session.add(ContributorHistory(
                contributor_id=row.id, tag=HistoryTag.REMOVED, value=0.0
            ))
            report.zeroed += 1

    def _notify_rewards_updated(self, report: SyncReport) -> None:
        if self.queue is None:
            return
        try:
            self.queue.enqueue(
                QUEUE_CONTRIBUTOR,
                JobType.REWARDS_UPDATED,
                {"contributors": len(report.proof)},
                dao_id=report.dao_id,
                dedup_key=f"rewards-updated:{report.dao_id}",
            )
        except Exception:
            # The snapshot is already committed; a lost notification is re-sent on the next sync
            logger.exception("Could not enqueue rewards-updated for DAO %s", report.dao_id)

    # -------------------------------------------------------------------
    # Wallet binding
    # -------------------------------------------------------------------
    def bind_wallet(
        self, access_token: str, platform: DaoPlatform | str, user_address: str
    ) -> int:
        """Bind *user_address* to every contributor row of the token's owner.

        Spans all DAOs in a single transaction.  Returns the number of rows
        updated.
        """
        if not user_address:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, "Wallet address is required")
        user = self.client.fetch_user_info(access_token, platform)
        platform = DaoPlatform(str(platform).upper())

        with get_session(self.engine) as session:
            result = session.execute(
                update(Contributor)
                .where(
                    Contributor.user_platform_id == user.id,
                    Contributor.platform == platform,
                )
                .values(user_address=user_address)
            )
            count = result.rowcount

        logger.info(
            "Bound wallet %s to %d contributor row(s) of %s user %s",
            user_address, count, platform, user.name,
        )
        return count

    # -------------------------------------------------------------------
    # Read paths
    # -------------------------------------------------------------------
    def get_contributors(
        self, dao_id: str, pageable: Pageable = Pageable()
    ) -> PageableData[Contributor]:
        if pageable.page < 0 or pageable.size <= 0:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Invalid pageable {pageable}")
        with get_session(self.engine) as session:
            _require_dao(session, dao_id)
            total = session.scalar(
                select(func.count()).select_from(Contributor).where(Contributor.dao_id == dao_id)
            ) or 0
            rows = session.scalars(
                _ordered_contributors(dao_id)
                .offset(pageable.page * pageable.size)
                .limit(pageable.size)
            ).all()
        return PageableData(
            list=list(rows),
            pages=math.ceil(total / pageable.size),
            total=total,
        )

    def get_top_contributors(self, dao_id: str, limit: int = 10) -> list[Contributor]:
        with get_session(self.engine) as session:
            _require_dao(session, dao_id)
            return list(session.scalars(_ordered_contributors(dao_id).limit(limit)).all())

    def get_proof(self, dao_id: str) -> list[ContributionShare]:
        with get_session(self.engine) as session:
            _require_dao(session, dao_id)
            rows = session.scalars(_ordered_contributors(dao_id)).all()
            return proof_for_rows(list(rows))

    def get_repo_info(self, url: str) -> RepoInfo:
        """Upstream metadata of a repository URL, before it is bound to a DAO."""
        meta = parse_repo_url(url)
        return self.client.fetch_repo_info(meta.platform, meta.owner, meta.repo)

    # -------------------------------------------------------------------
    # Job handlers
    # -------------------------------------------------------------------
    def _require_dao_id(self, job: JobEnvelope) -> str:
        dao_id = job.dao_id or job.data.get("dao_id")
        if not dao_id:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"{job.type} job without dao_id")
        return dao_id

    def handle_sync_one(self, job: JobEnvelope) -> None:
        """``contributor-init`` / ``contributor-update``."""
        self.sync_contributors(self._require_dao_id(job))

    def handle_sync_all(self, job: JobEnvelope) -> None:
        """``contributor-sync``: fan out one update job per DAO."""
        if self.queue is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Fan-out needs a job queue")
        with get_session(self.engine) as session:
            dao_ids = session.scalars(select(Dao.id).order_by(Dao.created_at)).all()
        for dao_id in dao_ids:
            self.queue.enqueue(
                QUEUE_CONTRIBUTOR,
                JobType.CONTRIBUTOR_UPDATE,
                dao_id=dao_id,
                dedup_key=f"contributor-update:{dao_id}",
            )
        logger.info("Queued contributor updates for %d DAO(s)", len(dao_ids))

    def handle_rewards_updated(self, job: JobEnvelope) -> None:
        logger.info(
            "Rewards updated for DAO %s (%s contributor(s))",
            job.dao_id, job.data.get("contributors", "?"),
        )

    def register_handlers(self, registry: HandlerRegistry) -> None:
        registry.register(JobType.CONTRIBUTOR_INIT, self.handle_sync_one)
        registry.register(JobType.CONTRIBUTOR_UPDATE, self.handle_sync_one)
        registry.register(JobType.CONTRIBUTOR_SYNC, self.handle_sync_all)
        registry.register(JobType.REWARDS_UPDATED, self.handle_rewards_updated)

    def emit_contributor_init(self, dao_id: str) -> str:
        """Queue the first sync for a freshly created DAO."""
        if self.queue is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "No job queue configured")
        return self.queue.enqueue(
            QUEUE_CONTRIBUTOR,
            JobType.CONTRIBUTOR_INIT,
            dao_id=dao_id,
            dedup_key=f"contributor-init:{dao_id}",
        )
