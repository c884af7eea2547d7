"""
launchpad.engine.content — DAO Content Kinds
=============================================

DAO pages carry free-form content blocks and social links.  Instead of
storing "any JSON", every block is one of a closed set of kinds with an
explicit schema; :func:`parse_content` validates at the boundary and
rejects anything else with ``BAD_PARAMS``.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError

from launchpad.errors import ErrorCode, LaunchpadError

__all__ = [
    "DaoContent",
    "DaoLink",
    "InformationContent",
    "ListRowContent",
    "RoadmapContent",
    "TeamContent",
    "parse_content",
    "parse_links",
]


# ---------------------------------------------------------------------------
# Item schemas
# ---------------------------------------------------------------------------
class ListRowItem(BaseModel):
    image: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=100)
    sort: int = Field(ge=0)
    description: str = Field(default="", max_length=500)
    link: HttpUrl


class TeamMember(BaseModel):
    name: str = Field(min_length=1)
    avatar: str
    title: str | None = None
    description: str | None = None
    x: HttpUrl | None = None
    website: HttpUrl | None = None
    telegram: HttpUrl | None = None
    github: HttpUrl | None = None
    sort: int = 0


class RoadmapItem(BaseModel):
    date: str = Field(min_length=1)
    description: str = Field(min_length=1, max_length=500)
    done: bool = False


class InformationData(BaseModel):
    image: str | None = None
    information: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Content blocks — discriminated on ``type``
# ---------------------------------------------------------------------------
class _ContentBase(BaseModel):
    title: str = Field(min_length=1)
    sort: int = 0


class ListRowContent(_ContentBase):
    type: Literal["LIST_ROW"]
    data: list[ListRowItem]


class TeamContent(_ContentBase):
    type: Literal["TEAM_COMMUNITY"]
    data: list[TeamMember]


class RoadmapContent(_ContentBase):
    type: Literal["ROADMAP"]
    data: list[RoadmapItem]


class InformationContent(_ContentBase):
    type: Literal["INFORMATION"]
    data: InformationData


DaoContent = Annotated[
    ListRowContent | TeamContent | RoadmapContent | InformationContent,
    Field(discriminator="type"),
]

_content_adapter: TypeAdapter[DaoContent] = TypeAdapter(DaoContent)


class DaoLink(BaseModel):
    type: Literal["x", "telegram", "discord", "website"]
    value: HttpUrl


_links_adapter: TypeAdapter[list[DaoLink]] = TypeAdapter(list[DaoLink])


# ---------------------------------------------------------------------------
# Boundary validation
# ---------------------------------------------------------------------------
def parse_content(raw: object) -> DaoContent:
    """Validate a raw content block.  Raises ``BAD_PARAMS`` on any mismatch."""
    try:
        return _content_adapter.validate_python(raw)
    except ValidationError as exc:
        raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Invalid DAO content: {exc.error_count()} error(s)", exc)


def parse_links(raw: object) -> list[DaoLink]:
    try:
        return _links_adapter.validate_python(raw)
    except ValidationError as exc:
        raise LaunchpadError(ErrorCode.BAD_PARAMS, f"Invalid DAO links: {exc.error_count()} error(s)", exc)
