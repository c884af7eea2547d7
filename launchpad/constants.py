"""
launchpad.constants — Shared Constants & Helpers
=================================================

Single source of truth for queue names, job types and the retry policy.
Import from here instead of duplicating string literals in workers,
services and the ops API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------
QUEUE_CONTRIBUTOR = "contributor"
QUEUE_DEX = "dex"
QUEUE_DAO = "dao"

ALL_QUEUES: tuple[str, ...] = (QUEUE_CONTRIBUTOR, QUEUE_DEX, QUEUE_DAO)


# ---------------------------------------------------------------------------
# Job types
# ---------------------------------------------------------------------------
class JobType:
    """Job type string constants, grouped by the queue that consumes them."""

    # contributor queue
    CONTRIBUTOR_INIT = "contributor-init"
    CONTRIBUTOR_SYNC = "contributor-sync"
    CONTRIBUTOR_UPDATE = "contributor-update"
    REWARDS_UPDATED = "rewards-updated"

    # dex queue
    DEX_EVENT = "dex-event"
    DEX_POLL_CHAIN = "dex-poll-chain"
    DEX_SYNC_ASSET_PRICE = "dex-sync-asset-price"
    DEX_SYNC_LAUNCHING_METRICS = "dex-sync-launching-dao-metrics"
    DEX_SYNC_GRADUATED_METRICS = "dex-sync-graduated-dao-metrics"
    DEX_REBUILD_HOLDERS = "dex-rebuild-holders"

    # dao queue
    STATUS_CHECK = "status-check"
    DAO_UPDATE_UNLOCK_RATIO = "dao-update-token-unlock-ratio"
    DAO_UPDATE_GRADUATED_HOLDERS = "dao-update-graduated-holders"


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------
MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_SECONDS = 5.0
DEFAULT_BACKOFF_CAP_SECONDS = 600.0
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 300
DEFAULT_HTTP_TIMEOUT_SECONDS = 15.0


def backoff_seconds(
    attempt: int,
    base: float = DEFAULT_BACKOFF_BASE_SECONDS,
    cap: float = DEFAULT_BACKOFF_CAP_SECONDS,
) -> float:
    """Delay before retry number *attempt*.

    Uses the exponential formula::

        delay = min(base * 2 ** attempt, cap)
    """
    if attempt < 0:
        attempt = 0
    return min(base * (2 ** attempt), cap)


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------
GITHUB_API = "https://api.github.com"
GITLAB_API = "https://gitlab.com/api/v4"

# Upstream maximum page size for both platforms
MAX_PAGE_SIZE = 100
