"""
launchpad.services.dao_service — DAO Status & Maintenance Jobs
===============================================================

Jobs of the ``dao`` queue:

* ``status-check`` — reconcile one DAO's status with its token facts.
* ``dao-update-token-unlock-ratio`` — copy unlock ratios from the
  token-lock contract for tokens that don't have one yet.
* ``dao-update-graduated-holders`` — recount holders of graduated tokens.

Status only ever moves forward through :mod:`launchpad.engine.lifecycle`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from launchpad.constants import QUEUE_DAO, JobType
from launchpad.database.engine import get_session
from launchpad.database.models import Dao, DaoStatus, DaoTokenInfo, Holder
from launchpad.engine import lifecycle
from launchpad.engine.events import JobEnvelope
from launchpad.errors import ErrorCode, LaunchpadError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from launchpad.clients.chain import ChainEventReader
    from launchpad.queue.job_queue import JobQueue
    from launchpad.queue.worker import HandlerRegistry

logger = logging.getLogger(__name__)


def expected_status(dao: Dao, info: DaoTokenInfo | None) -> DaoStatus:
    """Furthest status the stored token facts justify."""
    if info is not None and info.is_graduated:
        return DaoStatus.GRADUATED
    if info is not None and info.last_trade_price is not None:
        return DaoStatus.LIVE
    if dao.token_id is not None:
        return DaoStatus.LAUNCHING
    return DaoStatus.PRE_LAUNCH


class DaoService:
    def __init__(
        self,
        engine: Engine,
        *,
        reader: ChainEventReader | None = None,
        queue: JobQueue | None = None,
        token_lock_address: str | None = None,
    ) -> None:
        self.engine = engine
        self.reader = reader
        self.queue = queue
        self.token_lock_address = token_lock_address

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    def status_check(self, dao_id: str) -> DaoStatus:
        """Advance *dao_id* to the status its token facts imply."""
        with get_session(self.engine) as session:
            dao = session.get(Dao, dao_id)
            if dao is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"DAO {dao_id} not found")
            lifecycle.advance(dao, expected_status(dao, dao.token_info))
            return DaoStatus(dao.status)

    def set_status(self, dao_id: str, target: DaoStatus | str) -> DaoStatus:
        """Explicit transition request; raises ``INVALID_STATE`` if not forward."""
        try:
            target = DaoStatus(target)
        except ValueError as exc:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Unknown status {target!r}", exc)
        with get_session(self.engine) as session:
            dao = session.get(Dao, dao_id)
            if dao is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"DAO {dao_id} not found")
            lifecycle.transition(dao, target)
            return target

    def launch_token(self, dao_id: str, token_id: int) -> bool:
        """Bind the launched token to *dao_id* (once) and move to LAUNCHING."""
        with get_session(self.engine) as session:
            dao = session.get(Dao, dao_id)
            if dao is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"DAO {dao_id} not found")
            if session.get(DaoTokenInfo, token_id) is None:
                raise LaunchpadError(ErrorCode.NOT_FOUND, f"Token {token_id} not found")
            return lifecycle.assign_token(dao, token_id)

    def emit_status_check(self, dao_id: str) -> str:
        if self.queue is None:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "No job queue configured")
        return self.queue.enqueue(
            QUEUE_DAO, JobType.STATUS_CHECK, dao_id=dao_id, dedup_key=f"status-check:{dao_id}"
        )

    # -------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------
    def update_unlock_ratios(self) -> int:
        if self.reader is None or not self.token_lock_address:
            raise LaunchpadError(ErrorCode.INVALID_STATE, "Unlock ratios need a chain reader and lock address")

        with get_session(self.engine) as session:
            pending = [
                (info.token_id, info.token_address)
                for info in session.scalars(
                    select(DaoTokenInfo).where(
                        DaoTokenInfo.unlock_ratio.is_(None),
                        DaoTokenInfo.token_address.is_not(None),
                    )
                ).all()
            ]

        ratios: dict[int, float] = {}
        for token_id, token_address in pending:
            ratio = self.reader.unlock_ratio(self.token_lock_address, token_address)
            if ratio is not None:
                ratios[token_id] = ratio

        with get_session(self.engine) as session:
            for token_id, ratio in ratios.items():
                info = session.get(DaoTokenInfo, token_id)
                if info is not None and info.unlock_ratio is None:
                    info.unlock_ratio = ratio

        logger.info("Unlock ratios set for %d of %d token(s)", len(ratios), len(pending))
        return len(ratios)

    def update_graduated_holder_counts(self) -> int:
        """Recount positive-balance holders of every graduated token."""
        counts = (
            select(Holder.token_id, func.count().label("holders"))
            .where(Holder.balance > 0)
            .group_by(Holder.token_id)
        )
        with get_session(self.engine) as session:
            by_token = {row.token_id: row.holders for row in session.execute(counts)}
            infos = session.scalars(
                select(DaoTokenInfo).where(
                    DaoTokenInfo.is_graduated.is_(True),
                    DaoTokenInfo.unlock_ratio.is_not(None),
                )
            ).all()
            changed = 0
            for info in infos:
                holders = by_token.get(info.token_id, 0)
                if info.holder_count != holders:
                    info.holder_count = holders
                    changed += 1
        logger.info("Holder counts refreshed for %d graduated token(s)", changed)
        return changed

    # -------------------------------------------------------------------
    # Job handlers
    # -------------------------------------------------------------------
    def handle_status_check(self, job: JobEnvelope) -> None:
        if not job.dao_id:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, "status-check job without dao_id")
        self.status_check(job.dao_id)

    def register_handlers(self, registry: HandlerRegistry) -> None:
        registry.register(JobType.STATUS_CHECK, self.handle_status_check)
        registry.register(
            JobType.DAO_UPDATE_GRADUATED_HOLDERS, lambda job: self.update_graduated_holder_counts()
        )
        if self.reader is not None and self.token_lock_address:
            registry.register(JobType.DAO_UPDATE_UNLOCK_RATIO, lambda job: self.update_unlock_ratios())
