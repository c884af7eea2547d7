"""
launchpad.engine.proof — Proof-of-Contribution Calculator
==========================================================

Pure function: no DB, no network, no clock.  Turns raw contribution
metrics into percentage shares of the contributor reward pool::

    share = value / sum(values) * 100

A zero (or empty) total yields an empty result — nobody is awarded and
nothing is divided by zero.  The sum is taken with :func:`math.fsum` so the
same input always produces bit-identical output regardless of ordering
quirks in float accumulation.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from launchpad.errors import ErrorCode, LaunchpadError

__all__ = ["ContributionShare", "calculate_proof"]


@dataclass(frozen=True, slots=True)
class ContributionShare:
    contributor_id: str
    value: float
    share_percent: float


def calculate_proof(items: Iterable[tuple[str, float]]) -> list[ContributionShare]:
    """Return one :class:`ContributionShare` per input pair, in input order.

    Parameters
    ----------
    items:
        ``(contributor_id, snapshot_value)`` pairs.  Duplicate ids are
        rejected because the result would be ambiguous.

    Raises
    ------
    LaunchpadError
        ``BAD_PARAMS`` for negative, non-finite, or duplicate entries.
    """
    pairs: list[tuple[str, float]] = []
    seen: set[str] = set()
    for contributor_id, value in items:
        key = str(contributor_id)
        number = float(value)
        if not math.isfinite(number) or number < 0:
            raise LaunchpadError(
                ErrorCode.BAD_PARAMS,
                f"Invalid snapshot value {value!r} for contributor {key}",
            )
        if key in seen:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Duplicate contributor {key}")
        seen.add(key)
        pairs.append((key, number))

    total = math.fsum(value for _, value in pairs)
    if total <= 0:
        return []

    return [
        ContributionShare(contributor_id=key, value=value, share_percent=value / total * 100)
        for key, value in pairs
    ]
