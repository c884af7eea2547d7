"""
tests/test_credential_pool.py — Credential Pool Tests
======================================================
"""

from __future__ import annotations

import pytest

from launchpad.clients.platform import CredentialPool, CredentialUnavailable
from launchpad.errors import ErrorCode


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def ticks() -> FakeMonotonic:
    return FakeMonotonic()


def test_round_robin(ticks):
    pool = CredentialPool(["a", "b", "c"], clock=ticks)
    assert [pool.acquire(0) for _ in range(4)] == ["a", "b", "c", "a"]


def test_blank_and_duplicate_tokens_ignored():
    pool = CredentialPool(["a", " ", "a", "b"])
    assert len(pool) == 2


def test_penalized_token_skipped_until_cooldown(ticks):
    pool = CredentialPool(["a", "b"], cooldown_seconds=60, clock=ticks)
    pool.penalize("a")
    assert pool.available() == 1
    assert [pool.acquire(0) for _ in range(3)] == ["b", "b", "b"]

    ticks.now += 60
    assert pool.available() == 2
    assert {pool.acquire(0), pool.acquire(0)} == {"a", "b"}


def test_retry_after_extends_cooldown(ticks):
    pool = CredentialPool(["a"], cooldown_seconds=60, clock=ticks)
    pool.penalize("a", retry_after=300)
    ticks.now += 61
    assert pool.available() == 0


def test_all_cooling_down_raises_with_hint(ticks):
    pool = CredentialPool(["a"], cooldown_seconds=60, clock=ticks)
    pool.penalize("a")
    with pytest.raises(CredentialUnavailable) as exc_info:
        pool.acquire(timeout=0)
    assert exc_info.value.code == ErrorCode.RATE_LIMITED
    assert exc_info.value.retry_after == pytest.approx(60)


def test_empty_pool_raises():
    with pytest.raises(CredentialUnavailable):
        CredentialPool().acquire(timeout=0)


def test_added_token_is_usable(ticks):
    pool = CredentialPool(clock=ticks)
    pool.add("user-token")
    assert pool.acquire(0) == "user-token"
