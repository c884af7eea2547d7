"""
launchpad.api.routes.daos — DAO, contributor & proof endpoints
===============================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from launchpad.api.deps import (
    get_contributor_service,
    get_current_admin,
    get_current_wallet,
    get_dao_service,
)
from launchpad.clients.platform import Pageable
from launchpad.database.engine import run_db
from launchpad.database.models import Contributor, DaoPlatform
from launchpad.engine.content import parse_content, parse_links
from launchpad.services.contributor_service import ContributorService
from launchpad.services.dao_service import DaoService

router = APIRouter(tags=["daos"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class BindWalletRequest(BaseModel):
    platform: DaoPlatform
    access_token: str = Field(min_length=1)


class SetStatusRequest(BaseModel):
    status: str = Field(min_length=1)


class LaunchTokenRequest(BaseModel):
    token_id: int = Field(ge=0)


class ContentRequest(BaseModel):
    content: list[dict[str, Any]] = Field(default_factory=list)
    links: list[dict[str, Any]] = Field(default_factory=list)


def _contributor_dict(c: Contributor) -> dict:
    return {
        "id": c.id,
        "user_platform_id": c.user_platform_id,
        "user_platform_name": c.user_platform_name,
        "user_platform_avatar": c.user_platform_avatar,
        "snapshot_value": c.snapshot_value,
        "user_address": c.user_address,
    }


# ---------------------------------------------------------------------------
# Contributors
# ---------------------------------------------------------------------------
@router.get("/daos/{dao_id}/contributors")
async def list_contributors(
    dao_id: str,
    page: int = Query(0, ge=0),
    size: int = Query(12, ge=1, le=100),
    service: ContributorService = Depends(get_contributor_service),
):
    data = await run_db(service.get_contributors, dao_id, Pageable(page, size))
    return {
        "list": [_contributor_dict(c) for c in data.list],
        "pages": data.pages,
        "total": data.total,
    }


@router.get("/daos/{dao_id}/contributors/top")
async def top_contributors(
    dao_id: str,
    service: ContributorService = Depends(get_contributor_service),
):
    rows = await run_db(service.get_top_contributors, dao_id, 10)
    return [_contributor_dict(c) for c in rows]


@router.get("/daos/{dao_id}/proof")
async def proof_of_contribution(
    dao_id: str,
    service: ContributorService = Depends(get_contributor_service),
):
    shares = await run_db(service.get_proof, dao_id)
    return [
        {"contributor": s.contributor_id, "value": s.value, "share": s.share_percent}
        for s in shares
    ]


@router.post("/contributors/bind")
async def bind_wallet(
    body: BindWalletRequest,
    wallet: str = Depends(get_current_wallet),
    service: ContributorService = Depends(get_contributor_service),
):
    updated = await run_db(service.bind_wallet, body.access_token, body.platform, wallet)
    return {"user_address": wallet, "updated": updated}


# ---------------------------------------------------------------------------
# Operator triggers
# ---------------------------------------------------------------------------
@router.post("/daos/{dao_id}/sync", dependencies=[Depends(get_current_admin)])
async def trigger_contributor_sync(
    dao_id: str,
    service: ContributorService = Depends(get_contributor_service),
):
    job_id = await run_db(service.emit_contributor_init, dao_id)
    return {"job_id": job_id}


@router.post("/daos/{dao_id}/status-check", dependencies=[Depends(get_current_admin)])
async def trigger_status_check(
    dao_id: str,
    service: DaoService = Depends(get_dao_service),
):
    job_id = await run_db(service.emit_status_check, dao_id)
    return {"job_id": job_id}


@router.post("/daos/{dao_id}/status", dependencies=[Depends(get_current_admin)])
async def set_dao_status(
    dao_id: str,
    body: SetStatusRequest,
    service: DaoService = Depends(get_dao_service),
):
    status = await run_db(service.set_status, dao_id, body.status)
    return {"dao_id": dao_id, "status": status.value}


@router.post("/daos/{dao_id}/token", dependencies=[Depends(get_current_admin)])
async def launch_dao_token(
    dao_id: str,
    body: LaunchTokenRequest,
    service: DaoService = Depends(get_dao_service),
):
    assigned = await run_db(service.launch_token, dao_id, body.token_id)
    return {"dao_id": dao_id, "token_id": body.token_id, "assigned": assigned}


# ---------------------------------------------------------------------------
# Repository preview & content validation
# ---------------------------------------------------------------------------
@router.get("/repos/info")
async def repository_info(
    url: str = Query(..., min_length=1),
    service: ContributorService = Depends(get_contributor_service),
):
    info = await run_db(service.get_repo_info, url)
    return info.model_dump()


@router.post("/content/validate", dependencies=[Depends(get_current_wallet)])
async def validate_content(body: ContentRequest):
    """Normalize DAO page content; any unknown kind or bad field is a 400."""
    return {
        "content": [parse_content(block).model_dump(mode="json") for block in body.content],
        "links": [link.model_dump(mode="json") for link in parse_links(body.links)],
    }
