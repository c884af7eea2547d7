"""
launchpad.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for tuning and infrastructure settings (queue
policy, polling intervals, chain contracts).  Secrets — database URL,
platform access tokens, RPC endpoint, session secret — stay in ``.env``
and are read from the environment by the components that need them.

Usage::

    from launchpad.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.max_attempts)      # 5
    print(cfg.chain_id)          # 56
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from launchpad.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LaunchpadConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so an empty YAML file yields a working
    development setup; only chain settings need real values in production.
    """

    # Job queue policy
    max_attempts: int = MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS
    visibility_timeout_seconds: int = DEFAULT_VISIBILITY_TIMEOUT_SECONDS
    poll_interval_seconds: float = 1.0
    startup_delay_seconds: float = 5.0
    worker_concurrency: int = 1

    # Schedules (seconds)
    contributor_sync_every: int = 86_400
    dex_sync_every: int = 300
    dao_maintenance_every: int = 600
    chain_poll_every: int = 15

    # External platform
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    credential_cooldown_seconds: float = 60.0
    credential_acquire_timeout_seconds: float = 10.0
    page_retry_limit: int = 3

    # Chain
    chain_id: int = 56
    launchpad_address: str | None = None
    confirmations: int = 3
    block_chunk_size: int = 2_000
    start_block: int = 0
    holder_rescan_limit: int = 200
    token_lock_address: str | None = None
    wrapped_native_address: str | None = None

    # Ops API
    api_port: int = 8000


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LaunchpadConfig:
    """Read *path* and return a :class:`LaunchpadConfig` instance.

    Unknown keys are rejected so typos surface at startup instead of
    silently falling back to defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If the file contains keys that are not configuration fields.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = set(LaunchpadConfig.__dataclass_fields__)
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    return LaunchpadConfig(**raw)
