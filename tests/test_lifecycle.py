"""
tests/test_lifecycle.py — DAO Status State Machine Tests
=========================================================
"""

from __future__ import annotations

import pytest

from launchpad.database.models import Dao, DaoPlatform, DaoStatus
from launchpad.engine import lifecycle
from launchpad.errors import ErrorCode, LaunchpadError


def _dao(status: DaoStatus = DaoStatus.PRE_LAUNCH, token_id: int | None = None) -> Dao:
    return Dao(
        id="dao-x",
        name="X",
        ticker="X",
        url="https://github.com/x/x",
        platform=DaoPlatform.GITHUB,
        status=status,
        token_id=token_id,
        created_by="0x0",
    )


class TestRank:
    def test_lifecycle_order(self):
        ranks = [lifecycle.rank(s) for s in DaoStatus]
        assert ranks == sorted(ranks)
        assert lifecycle.rank(DaoStatus.PRE_LAUNCH) < lifecycle.rank(DaoStatus.GRADUATED)

    def test_unset_status_counts_as_pre_launch(self):
        assert lifecycle.rank(None) == lifecycle.rank(DaoStatus.PRE_LAUNCH)


class TestAdvance:
    def test_forward_move(self):
        dao = _dao(DaoStatus.LAUNCHING)
        assert lifecycle.advance(dao, DaoStatus.LIVE) is True
        assert dao.status == DaoStatus.LIVE

    def test_skipping_ahead_allowed(self):
        dao = _dao(DaoStatus.PRE_LAUNCH)
        assert lifecycle.advance(dao, DaoStatus.GRADUATED) is True
        assert dao.status == DaoStatus.GRADUATED

    def test_same_status_is_noop(self):
        dao = _dao(DaoStatus.GRADUATED)
        assert lifecycle.advance(dao, DaoStatus.GRADUATED) is False

    def test_never_moves_backwards(self):
        dao = _dao(DaoStatus.GRADUATED)
        assert lifecycle.advance(dao, DaoStatus.LIVE) is False
        assert dao.status == DaoStatus.GRADUATED


class TestTransition:
    def test_backwards_raises_invalid_state(self):
        dao = _dao(DaoStatus.LIVE)
        with pytest.raises(LaunchpadError) as exc_info:
            lifecycle.transition(dao, DaoStatus.LAUNCHING)
        assert exc_info.value.code == ErrorCode.INVALID_STATE
        assert dao.status == DaoStatus.LIVE

    def test_repeat_raises_invalid_state(self):
        with pytest.raises(LaunchpadError):
            lifecycle.transition(_dao(DaoStatus.LIVE), DaoStatus.LIVE)


class TestAssignToken:
    def test_first_assignment_launches(self):
        dao = _dao()
        assert lifecycle.assign_token(dao, 42) is True
        assert dao.token_id == 42
        assert dao.status == DaoStatus.LAUNCHING

    def test_same_token_is_noop(self):
        dao = _dao(DaoStatus.LIVE, token_id=42)
        assert lifecycle.assign_token(dao, 42) is False
        assert dao.status == DaoStatus.LIVE

    def test_different_token_rejected(self):
        dao = _dao(DaoStatus.LAUNCHING, token_id=42)
        with pytest.raises(LaunchpadError) as exc_info:
            lifecycle.assign_token(dao, 43)
        assert exc_info.value.code == ErrorCode.INVALID_STATE
        assert dao.token_id == 42
