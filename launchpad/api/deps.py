"""
launchpad.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from launchpad.clients.platform import platform_client_from_env
from launchpad.config import LaunchpadConfig, load_config
from launchpad.database.engine import create_db_engine
from launchpad.queue.job_queue import JobQueue
from launchpad.services.contributor_service import ContributorService
from launchpad.services.dao_service import DaoService

_WEAK_SECRETS = frozenset({
    "launchpad-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate SESSION_JWT_SECRET from the environment.

    The secret is shared with the external auth service that issues
    session tokens.  Raises RuntimeError at import time if it is missing,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("SESSION_JWT_SECRET", "")
    if not secret:
        raise RuntimeError("SESSION_JWT_SECRET environment variable is not set.")
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"SESSION_JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"SESSION_JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> LaunchpadConfig:
    return load_config()


def get_queue(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[LaunchpadConfig, Depends(get_config)],
) -> JobQueue:
    return JobQueue(
        engine,
        max_attempts=cfg.max_attempts,
        backoff_base=cfg.backoff_base_seconds,
        backoff_cap=cfg.backoff_cap_seconds,
        visibility_timeout=cfg.visibility_timeout_seconds,
    )


@lru_cache(maxsize=1)
def _contributor_service() -> ContributorService:
    cfg = get_config()
    engine = get_engine()
    return ContributorService(engine, platform_client_from_env(cfg), get_queue(engine, cfg))


def get_contributor_service() -> ContributorService:
    return _contributor_service()


def get_dao_service(
    engine: Annotated[Engine, Depends(get_engine)],
    queue: Annotated[JobQueue, Depends(get_queue)],
) -> DaoService:
    return DaoService(engine, queue=queue)


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_wallet(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Wallet address (``sub``) of a verified session token."""
    payload = _decode(authorization)
    wallet = payload.get("sub")
    if not wallet:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no wallet")
    return wallet


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return the operator payload. Raises 401/403."""
    payload = _decode(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
