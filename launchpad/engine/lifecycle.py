"""
launchpad.engine.lifecycle — DAO Status State Machine
======================================================

Statuses only move forward::

    PRE_LAUNCH → LAUNCHING → LIVE → GRADUATED

Skipping ahead is allowed (a DAO can graduate before anyone notices it
went live); moving back never is.  Workers call :func:`advance`, which
treats "already there or further" as a no-op so duplicate events are
harmless.  :func:`transition` is the strict form for explicit requests.
"""

from __future__ import annotations

import logging

from launchpad.database.models import Dao, DaoStatus
from launchpad.errors import ErrorCode, LaunchpadError

logger = logging.getLogger(__name__)

STATUS_RANK: dict[DaoStatus, int] = {status: rank for rank, status in enumerate(DaoStatus)}


def rank(status: DaoStatus | None) -> int:
    # Unflushed rows have no column default applied yet
    if status is None:
        return STATUS_RANK[DaoStatus.PRE_LAUNCH]
    return STATUS_RANK[DaoStatus(status)]


def can_transition(current: DaoStatus, target: DaoStatus) -> bool:
    return rank(target) > rank(current)


def advance(dao: Dao, target: DaoStatus) -> bool:
    """Move *dao* to *target* if that is forward.  Returns True if changed."""
    if not can_transition(dao.status, target):
        logger.debug(
            "DAO %s already at %s, ignoring advance to %s", dao.id, dao.status, target
        )
        return False
    logger.info("DAO %s status %s → %s", dao.id, dao.status, target)
    dao.status = target
    return True


def transition(dao: Dao, target: DaoStatus) -> None:
    """Strict transition: raises ``INVALID_STATE`` unless *target* is forward."""
    if not can_transition(dao.status, target):
        raise LaunchpadError(
            ErrorCode.INVALID_STATE,
            f"Cannot move DAO {dao.id} from {dao.status} to {target}",
        )
    advance(dao, target)


def assign_token(dao: Dao, token_id: int) -> bool:
    """Attach *token_id* to *dao* once.  Returns True if it was newly set.

    Re-assigning the same id is a no-op; a different id raises
    ``INVALID_STATE`` because ``token_id`` is immutable after launch.
    """
    if dao.token_id is None:
        dao.token_id = token_id
        advance(dao, DaoStatus.LAUNCHING)
        return True
    if dao.token_id != token_id:
        raise LaunchpadError(
            ErrorCode.INVALID_STATE,
            f"DAO {dao.id} already bound to token {dao.token_id}",
        )
    return False
