"""
launchpad.clients.platform — Source-Hosting Platform Client
============================================================

Uniform read interface over GitHub (REST v3) and GitLab (REST v4):

* :meth:`PlatformClient.fetch_user_info` — identity behind an access token
  (used by wallet binding).
* :meth:`PlatformClient.fetch_contributors` — one page, 0-based offset
  pagination translated onto the upstream's 1-based page numbers.
* :meth:`PlatformClient.fetch_all_contributors` — every page, retrying a
  throttled page with exponential backoff before giving up.

Throttling (HTTP 429, or 403 with ``X-RateLimit-Remaining: 0``) raises
``RATE_LIMITED`` and puts the offending credential into cooldown in the
:class:`CredentialPool`, so the next request rotates to another token.

This client never touches the database.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, PrivateAttr, ValidationError

from launchpad.config import LaunchpadConfig
from launchpad.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    GITHUB_API,
    GITLAB_API,
    MAX_PAGE_SIZE,
    backoff_seconds,
)
from launchpad.database.models import DaoPlatform
from launchpad.errors import ErrorCode, LaunchpadError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REPO_URL_RE = re.compile(
    r"^https://(github|gitlab)\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)
_LINK_LAST_RE = re.compile(r"[?&]page=(\d+)[^>]*>;\s*rel=\"last\"")


# ---------------------------------------------------------------------------
# Data shapes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RepoMeta:
    platform: DaoPlatform
    owner: str
    repo: str


@dataclass(frozen=True, slots=True)
class Pageable:
    """0-based page request."""

    page: int = 0
    size: int = 12


@dataclass(slots=True)
class PageableData(Generic[T]):
    list: list[T] = field(default_factory=list)
    pages: int = 0
    total: int = 0


class PlatformUser(BaseModel):
    id: str
    name: str
    avatar: str


class ContributorInfo(BaseModel):
    id: str
    name: str
    avatar: str
    contributions: int

    # Upstream row identity; several rows can share one normalized id
    _source_key: str = PrivateAttr(default="")


class RepoInfo(BaseModel):
    name: str
    full_name: str
    description: str | None = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    homepage: str | None = None


# Upstream payloads — validated before mapping
class _GithubUser(BaseModel):
    id: int
    login: str
    avatar_url: str = ""


class _GithubContributor(BaseModel):
    id: int
    login: str
    avatar_url: str = ""
    contributions: int


class _GitlabUser(BaseModel):
    id: int
    username: str
    email: str | None = None
    public_email: str | None = None
    avatar_url: str | None = None


class _GitlabContributor(BaseModel):
    name: str
    email: str
    commits: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def parse_repo_url(url: str) -> RepoMeta:
    """Split ``https://github.com/<owner>/<repo>`` into :class:`RepoMeta`."""
    match = _REPO_URL_RE.match(url.strip())
    if not match:
        raise LaunchpadError(
            ErrorCode.BAD_PARAMS,
            "Invalid repository URL. Must be a GitHub or GitLab URL.",
        )
    platform, owner, repo = match.groups()
    return RepoMeta(platform=DaoPlatform(platform.upper()), owner=owner, repo=repo)


def gitlab_identity(email: str) -> str:
    """GitLab contributor listings expose emails, not user ids."""
    return email.strip().lower()


def _contributor(uid: str, name: str, avatar: str, contributions: int, source_key: str) -> ContributorInfo:
    info = ContributorInfo(id=uid, name=name, avatar=avatar, contributions=contributions)
    info._source_key = source_key
    return info


def _unsupported(platform: object) -> LaunchpadError:
    return LaunchpadError(
        ErrorCode.BAD_PARAMS,
        f"Unsupported platform {platform!r}. Must be 'GITHUB' or 'GITLAB'.",
    )


def _as_platform(platform: DaoPlatform | str) -> DaoPlatform:
    try:
        return DaoPlatform(str(platform).upper())
    except ValueError:
        raise _unsupported(platform) from None


def _retry_after(response: httpx.Response) -> float | None:
    """Seconds until the upstream lets us try again, if it says so."""
    header = response.headers.get("Retry-After")
    if header and header.isdigit():
        return float(header)
    reset = response.headers.get("X-RateLimit-Reset") or response.headers.get("RateLimit-Reset")
    if reset and reset.isdigit():
        return max(0.0, float(reset) - time.time())
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code == 403:
        remaining = response.headers.get("X-RateLimit-Remaining") or response.headers.get(
            "RateLimit-Remaining"
        )
        return remaining == "0"
    return False


# ---------------------------------------------------------------------------
# Credential pool
# ---------------------------------------------------------------------------
class CredentialUnavailable(LaunchpadError):
    """No credential became available within the acquisition timeout."""

    def __init__(self, wait_hint: float | None = None) -> None:
        super().__init__(
            ErrorCode.RATE_LIMITED,
            "No platform credential available",
            retry_after=wait_hint,
        )


class CredentialPool:
    """Round-robin pool of access tokens with a per-token cooldown.

    A token that hit a 403/429 is skipped until its cooldown expires.
    :meth:`acquire` waits at most *timeout* seconds for any token to come
    back; callers that time out re-enqueue their job instead of blocking.
    """

    def __init__(
        self,
        tokens: Iterable[str] = (),
        cooldown_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._tokens: list[str] = []
        self._cooldown_until: dict[str, float] = {}
        self._next = 0
        self._cond = threading.Condition()
        for token in tokens:
            self.add(token)

    def __len__(self) -> int:
        return len(self._tokens)

    def add(self, token: str) -> None:
        """Register a token (the system token or a user's token)."""
        token = token.strip()
        if not token:
            return
        with self._cond:
            if token not in self._tokens:
                self._tokens.append(token)
                self._cond.notify_all()

    def available(self) -> int:
        now = self._clock()
        with self._cond:
            return sum(1 for t in self._tokens if self._cooldown_until.get(t, 0.0) <= now)

    def acquire(self, timeout: float = 10.0) -> str:
        """Return the next ready token in round-robin order.

        Raises
        ------
        CredentialUnavailable
            If the pool is empty or every token stays cooling down past
            *timeout*.
        """
        deadline = self._clock() + timeout
        with self._cond:
            while True:
                now = self._clock()
                count = len(self._tokens)
                for offset in range(count):
                    idx = (self._next + offset) % count
                    token = self._tokens[idx]
                    if self._cooldown_until.get(token, 0.0) <= now:
                        self._next = (idx + 1) % count
                        return token

                if count == 0:
                    raise CredentialUnavailable()
                soonest = min(self._cooldown_until.get(t, 0.0) for t in self._tokens)
                remaining = deadline - now
                if remaining <= 0 or soonest > deadline:
                    raise CredentialUnavailable(wait_hint=max(0.0, soonest - now))
                self._cond.wait(timeout=min(remaining, max(soonest - now, 0.01)))

    def penalize(self, token: str, retry_after: float | None = None) -> None:
        """Put *token* into cooldown after a 403/429."""
        cooldown = max(self.cooldown_seconds, retry_after or 0.0)
        with self._cond:
            self._cooldown_until[token] = self._clock() + cooldown
        logger.warning("Platform credential …%s cooling down for %.0fs", token[-4:], cooldown)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class PlatformClient:
    """GitHub/GitLab reader sharing one :class:`httpx.Client`.

    Parameters
    ----------
    pools:
        Credential pool per platform for unauthenticated-by-user calls
        (contributor listings, repo info).  A platform without a pool is
        called anonymously.
    """

    def __init__(
        self,
        pools: dict[DaoPlatform, CredentialPool] | None = None,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        acquire_timeout: float = 10.0,
        page_retry_limit: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        http: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pools = pools or {}
        self.acquire_timeout = acquire_timeout
        self.page_retry_limit = page_retry_limit
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._http = http or httpx.Client(
            timeout=timeout,
            transport=httpx.HTTPTransport(retries=1),
            headers={"User-Agent": "launchpad-sync"},
        )
        self._sleep = sleep

    def close(self) -> None:
        self._http.close()

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def _get(
        self,
        platform: DaoPlatform,
        url: str,
        *,
        params: dict | None = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        pool = None if access_token else self.pools.get(platform)
        token = access_token
        if pool is not None and len(pool):
            token = pool.acquire(self.acquire_timeout)

        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if platform == DaoPlatform.GITHUB:
            headers["Accept"] = "application/vnd.github+json"

        try:
            response = self._http.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise LaunchpadError(ErrorCode.INTERNAL_ERROR, f"Timeout calling {url}", exc)

        if _is_rate_limited(response):
            hint = _retry_after(response)
            if pool is not None and token:
                pool.penalize(token, hint)
            raise LaunchpadError(
                ErrorCode.RATE_LIMITED,
                f"{platform} rate limit hit for {url}",
                retry_after=hint,
            )
        if response.status_code == 401:
            raise LaunchpadError(ErrorCode.UNAUTHORIZED, f"{platform} rejected the credential")
        if response.status_code == 404:
            raise LaunchpadError(ErrorCode.NOT_FOUND, f"{platform} resource not found: {url}")
        if response.status_code >= 400:
            logger.error(
                "[%s] %s → %d %s", platform, url, response.status_code, response.text[:200]
            )
            raise LaunchpadError(
                ErrorCode.INTERNAL_ERROR,
                f"{platform} request failed: {response.status_code}",
            )
        return response

    # -------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------
    def fetch_user_info(self, access_token: str, platform: DaoPlatform | str) -> PlatformUser:
        """Return the platform identity that owns *access_token*."""
        platform = _as_platform(platform)
        if not access_token:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, "Access token is required")

        try:
            if platform == DaoPlatform.GITHUB:
                response = self._get(platform, f"{GITHUB_API}/user", access_token=access_token)
                user = _GithubUser.model_validate(response.json())
                return PlatformUser(id=str(user.id), name=user.login, avatar=user.avatar_url)

            if platform == DaoPlatform.GITLAB:
                response = self._get(platform, f"{GITLAB_API}/user", access_token=access_token)
                gl_user = _GitlabUser.model_validate(response.json())
                email = gl_user.email or gl_user.public_email
                if not email:
                    raise LaunchpadError(
                        ErrorCode.BAD_PARAMS,
                        "GitLab account has no email; grant the read_user scope",
                    )
                return PlatformUser(
                    id=gitlab_identity(email),
                    name=gl_user.username,
                    avatar=gl_user.avatar_url or "",
                )
        except ValidationError as exc:
            raise LaunchpadError(
                ErrorCode.INTERNAL_ERROR, f"Invalid response format from {platform} user API", exc
            )
        raise _unsupported(platform)

    # -------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------
    def fetch_repo_info(self, platform: DaoPlatform | str, owner: str, repo: str) -> RepoInfo:
        platform = _as_platform(platform)
        try:
            if platform == DaoPlatform.GITHUB:
                data = self._get(platform, f"{GITHUB_API}/repos/{owner}/{repo}").json()
                return RepoInfo(
                    name=data["name"],
                    full_name=data["full_name"],
                    description=data.get("description"),
                    stars=data.get("stargazers_count", 0),
                    forks=data.get("forks_count", 0),
                    open_issues=data.get("open_issues_count", 0),
                    homepage=data.get("homepage"),
                )
            if platform == DaoPlatform.GITLAB:
                project = quote(f"{owner}/{repo}", safe="")
                data = self._get(platform, f"{GITLAB_API}/projects/{project}").json()
                return RepoInfo(
                    name=data["name"],
                    full_name=data["path_with_namespace"],
                    description=data.get("description"),
                    stars=data.get("star_count", 0),
                    forks=data.get("forks_count", 0),
                    open_issues=data.get("open_issues_count", 0),
                    homepage=data.get("web_url"),
                )
        except (KeyError, ValidationError) as exc:
            raise LaunchpadError(
                ErrorCode.INTERNAL_ERROR, f"Invalid response format from {platform} repo API", exc
            )
        raise _unsupported(platform)

    # -------------------------------------------------------------------
    # Contributors
    # -------------------------------------------------------------------
    def fetch_contributors(
        self,
        platform: DaoPlatform | str,
        owner: str,
        repo: str,
        pageable: Pageable = Pageable(),
    ) -> PageableData[ContributorInfo]:
        """Fetch one page of contributors.

        ``pageable.page`` is 0-based; ``pageable.size`` is capped at the
        upstream maximum of 100.  GitHub does not report a total, so
        ``total`` is exact only on the last page and an upper bound
        (``pages * size``) elsewhere.
        """
        platform = _as_platform(platform)
        if pageable.page < 0 or pageable.size <= 0:
            raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Invalid pageable {pageable}")
        size = min(pageable.size, MAX_PAGE_SIZE)
        upstream_page = pageable.page + 1

        try:
            if platform == DaoPlatform.GITHUB:
                response = self._get(
                    platform,
                    f"{GITHUB_API}/repos/{owner}/{repo}/contributors",
                    params={"per_page": size, "page": upstream_page},
                )
                raw = [] if response.status_code == 204 else response.json()
                items = [
                    _contributor(str(c.id), c.login, c.avatar_url, c.contributions, str(c.id))
                    for c in (_GithubContributor.model_validate(r) for r in raw)
                ]
                last = _LINK_LAST_RE.search(response.headers.get("Link", ""))
                pages = int(last.group(1)) if last else upstream_page if items else pageable.page
                total = None

            elif platform == DaoPlatform.GITLAB:
                project = quote(f"{owner}/{repo}", safe="")
                response = self._get(
                    platform,
                    f"{GITLAB_API}/projects/{project}/repository/contributors",
                    params={
                        "per_page": size,
                        "page": upstream_page,
                        "order_by": "commits",
                        "sort": "desc",
                    },
                )
                items = [
                    _contributor(gitlab_identity(c.email), c.name, "", c.commits, f"{c.name}\n{c.email}")
                    for c in (_GitlabContributor.model_validate(r) for r in response.json())
                ]
                pages_header = response.headers.get("X-Total-Pages", "")
                total_header = response.headers.get("X-Total", "")
                pages = int(pages_header) if pages_header.isdigit() else upstream_page
                total = int(total_header) if total_header.isdigit() else None

            else:
                raise _unsupported(platform)
        except (ValidationError, TypeError) as exc:
            raise LaunchpadError(
                ErrorCode.INTERNAL_ERROR,
                f"Invalid response format from {platform} contributors API",
                exc,
            )

        if total is None:
            if upstream_page >= pages:
                total = max(0, (upstream_page - 1) * size) + len(items)
            else:
                total = pages * size
        return PageableData(list=items, pages=pages, total=total)

    def fetch_all_contributors(
        self, platform: DaoPlatform | str, owner: str, repo: str
    ) -> list[ContributorInfo]:
        """Aggregate every contributor page.

        A throttled page is retried up to ``page_retry_limit`` times with
        ``backoff_base * 2**attempt`` sleeps (rotating credentials in
        between); after that the ``RATE_LIMITED`` error propagates so the
        job queue can retry the whole job later.
        """
        contributors: dict[str, ContributorInfo] = {}
        seen: set[str] = set()
        page = 0
        while True:
            result = self._fetch_page_with_retry(platform, owner, repo, Pageable(page, MAX_PAGE_SIZE))
            for item in result.list:
                # Pages can shift while we walk them; a row seen twice counts once
                if item._source_key in seen:
                    continue
                seen.add(item._source_key)
                merged = contributors.get(item.id)
                if merged is None:
                    contributors[item.id] = item
                else:
                    # GitLab lists one row per raw email spelling
                    contributors[item.id] = merged.model_copy(
                        update={"contributions": merged.contributions + item.contributions}
                    )
            if len(result.list) < MAX_PAGE_SIZE or page + 1 >= result.pages:
                break
            page += 1
        logger.info(
            "[%s] %s/%s: fetched %d contributors over %d page(s)",
            platform, owner, repo, len(contributors), page + 1,
        )
        return list(contributors.values())

    def _fetch_page_with_retry(
        self, platform: DaoPlatform | str, owner: str, repo: str, pageable: Pageable
    ) -> PageableData[ContributorInfo]:
        attempt = 0
        while True:
            try:
                return self.fetch_contributors(platform, owner, repo, pageable)
            except CredentialUnavailable:
                raise
            except LaunchpadError as exc:
                if exc.code != ErrorCode.RATE_LIMITED or attempt >= self.page_retry_limit:
                    raise
                delay = backoff_seconds(attempt, self.backoff_base, self.backoff_cap)
                logger.warning(
                    "[%s] %s/%s page %d throttled, retry %d/%d in %.1fs",
                    platform, owner, repo, pageable.page, attempt + 1,
                    self.page_retry_limit, delay,
                )
                self._sleep(delay)
                attempt += 1


# ---------------------------------------------------------------------------
# Construction from the environment
# ---------------------------------------------------------------------------
def _env_tokens(name: str) -> list[str]:
    return [t.strip() for t in os.getenv(name, "").split(",") if t.strip()]


def platform_client_from_env(cfg: LaunchpadConfig) -> PlatformClient:
    """Build a client whose pools hold the system tokens from ``.env``.

    ``GITHUB_ACCESS_TOKENS`` / ``GITLAB_ACCESS_TOKENS`` are comma-separated.
    """
    pools = {
        DaoPlatform.GITHUB: CredentialPool(
            _env_tokens("GITHUB_ACCESS_TOKENS"), cfg.credential_cooldown_seconds
        ),
        DaoPlatform.GITLAB: CredentialPool(
            _env_tokens("GITLAB_ACCESS_TOKENS"), cfg.credential_cooldown_seconds
        ),
    }
    for platform, pool in pools.items():
        if not len(pool):
            logger.warning("No %s access tokens configured; calls will be anonymous", platform)
    return PlatformClient(
        pools,
        timeout=cfg.http_timeout_seconds,
        acquire_timeout=cfg.credential_acquire_timeout_seconds,
        page_retry_limit=cfg.page_retry_limit,
    )
