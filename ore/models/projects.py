"""Pydantic v2 request/response models for the Ore API.

All wire-format fields use camelCase via CamelModel.  Python code uses
snake_case throughout; only serialisation to JSON uses camelCase.

Responses are fully materialised: every service returns these DTOs (never ORM
rows), so nothing downstream relies on lazy relationship loading.
"""
from __future__ import annotations

import enum
from datetime import datetime

from pydantic import Field

from ore.models.base import CamelModel


class Category(str, enum.Enum):
    """Project categories shown on the home page filter."""

    admin_tools = "admin_tools"
    chat = "chat"
    dev_tools = "dev_tools"
    economy = "economy"
    gameplay = "gameplay"
    games = "games"
    protection = "protection"
    role_playing = "role_playing"
    world_management = "world_management"
    misc = "misc"


class Stability(str, enum.Enum):
    """How stable the uploader declares a version to be."""

    stable = "stable"
    beta = "beta"
    alpha = "alpha"
    bleeding = "bleeding"
    unsupported = "unsupported"
    broken = "broken"


class ReleaseType(str, enum.Enum):
    """What kind of release a version is, relative to the previous one."""

    major_update = "major_update"
    minor_update = "minor_update"
    patch = "patches"
    hotfix = "hotfix"


class Visibility(enum.IntEnum):
    """Who can see a project.  The integer values are what the database stores."""

    Public = 1
    New = 2
    NeedsChanges = 3
    NeedsApproval = 4
    SoftDelete = 5

    @property
    def is_public(self) -> bool:
        """Public and New projects are listed and readable by everyone."""
        return self in (Visibility.Public, Visibility.New)

    @property
    def name_key(self) -> str:
        return _VISIBILITY_NAME_KEYS[self]


_VISIBILITY_NAME_KEYS: dict[Visibility, str] = {
    Visibility.Public: "visibility.name.public",
    Visibility.New: "visibility.name.new",
    Visibility.NeedsChanges: "visibility.name.needsChanges",
    Visibility.NeedsApproval: "visibility.name.needsApproval",
    Visibility.SoftDelete: "visibility.name.softDelete",
}


class FlagReason(str, enum.Enum):
    """Why a user flagged a project."""

    inappropriate_content = "inappropriate_content"
    impersonation = "impersonation"
    spam = "spam"
    mal_intent = "mal_intent"
    other = "other"


# ── Projects ──────────────────────────────────────────────────────────────────


class ProjectCreateRequest(CamelModel):
    """Body for POST /projects."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=25,
        pattern=r"^[A-Za-z0-9 ._-]+$",
        description="Display name (letters, digits, spaces, . _ -); the slug derives from it",
    )
    category: Category = Category.misc
    description: str = Field("", max_length=120)
    organization: str | None = Field(None, description="Create the project under this organization")


class ProjectResponse(CamelModel):
    """Core project fields."""

    project_id: str
    owner_id: str
    owner_name: str
    name: str
    slug: str
    category: str
    description: str
    visibility: int
    visibility_name: str
    recommended_version_id: str | None = None
    topic_id: int | None = None
    downloads: int = 0
    created_at: datetime


class VisibilityChangeRequest(CamelModel):
    """Body for POST /projects/{owner}/{slug}/visibility."""

    visibility: int = Field(..., ge=1, le=5, description="1 Public, 2 New, 3 NeedsChanges, 4 NeedsApproval, 5 SoftDelete")
    comment: str = Field("", max_length=10_000)


class CommentRequest(CamelModel):
    """Body carrying a moderation comment (soft delete)."""

    comment: str = Field("", max_length=10_000)


class VisibilityChangeResponse(CamelModel):
    """One audit record of a visibility transition."""

    change_id: str
    project_id: str
    created_by: str | None
    created_by_name: str | None = None
    old_visibility: int
    new_visibility: int
    comment: str
    created_at: datetime


class VisibilityTransitionResponse(CamelModel):
    """Result of a visibility transition: the updated project plus its audit record."""

    project: ProjectResponse
    change: VisibilityChangeResponse


# ── Channels ──────────────────────────────────────────────────────────────────


class ChannelCreateRequest(CamelModel):
    """Body for POST /projects/{owner}/{slug}/channels."""

    name: str = Field(..., min_length=1, max_length=15)
    color: int = Field(..., ge=1, description="ChannelColor id")
    is_non_reviewed: bool = False


class ChannelUpdateRequest(CamelModel):
    """Body for PUT /projects/{owner}/{slug}/channels/{name}."""

    name: str | None = Field(None, min_length=1, max_length=15)
    color: int | None = Field(None, ge=1)
    is_non_reviewed: bool | None = None


class ChannelResponse(CamelModel):
    channel_id: str
    name: str
    color: int
    color_hex: str
    is_non_reviewed: bool
    version_count: int = 0


class ChannelListResponse(CamelModel):
    channels: list[ChannelResponse]


# ── Versions ──────────────────────────────────────────────────────────────────


class AssetResponse(CamelModel):
    asset_id: str
    filename: str
    hash: str = Field(..., description="MD5 hex digest of the file bytes")
    file_size: int


class PlatformResponse(CamelModel):
    platform: str
    platform_version: str | None = None
    platform_coarse_version: str | None = None


class TagResponse(CamelModel):
    name: str
    data: str
    background: str
    foreground: str


class VersionResponse(CamelModel):
    """A version with its asset, platforms and display tags."""

    version_id: str
    project_id: str
    channel_id: str
    channel_name: str
    name: str
    slug: str
    author_id: str | None = None
    description: str | None = None
    stability: str
    release_type: str | None = None
    uses_mixin: bool
    downloads: int = 0
    asset: AssetResponse
    platforms: list[PlatformResponse] = Field(default_factory=list)
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime


class VersionUploadResponse(CamelModel):
    """Response for a successful upload; ``warnings`` are non-fatal."""

    version: VersionResponse
    warnings: list[str] = Field(default_factory=list)


class VersionListResponse(CamelModel):
    versions: list[VersionResponse]
    total: int


# ── Members ───────────────────────────────────────────────────────────────────


class InviteRequest(CamelModel):
    """Body for POST .../members — invite a user to a role."""

    user_name: str = Field(..., min_length=1, max_length=255)
    role: str = Field(..., description="Role type, e.g. project_developer")


class MemberResponse(CamelModel):
    role_id: str
    user_id: str
    user_name: str
    role_type: str
    is_accepted: bool


class MemberListResponse(CamelModel):
    members: list[MemberResponse]
    total: int


class InviteStatusResponse(CamelModel):
    """Result of answering an invite; ``is_accepted`` is null once declined."""

    role_id: str
    status: str
    is_accepted: bool | None = None


# ── Moderation ────────────────────────────────────────────────────────────────


class FlagCreateRequest(CamelModel):
    reason: FlagReason
    comment: str = Field("", max_length=255)


class FlagResponse(CamelModel):
    """A flag with reporter and resolver names resolved."""

    flag_id: str
    project_id: str
    user_id: str
    user_name: str
    reason: str
    comment: str
    is_resolved: bool
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolved_by_name: str | None = None
    created_at: datetime


class FlagListResponse(CamelModel):
    flags: list[FlagResponse]


class NoteCreateRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=10_000)


class NoteResponse(CamelModel):
    note_id: str
    user_id: str
    user_name: str | None = None
    message: str
    created_at: datetime


class NoteListResponse(CamelModel):
    notes: list[NoteResponse]


class DiscussionReplyRequest(CamelModel):
    """Body for POST .../discuss; ``poster`` may name an organization."""

    content: str = Field(..., min_length=1, max_length=32_000)
    poster: str | None = None


class ProjectViewResponse(CamelModel):
    """Everything the project page needs, in one fully materialised object."""

    project: ProjectResponse
    version_count: int = Field(..., description="Every version of the project; versions are listed wherever the project is visible")
    members: list[MemberResponse]
    flag_count: int
    note_count: int
    star_count: int
    watcher_count: int
    last_visibility_change: VisibilityChangeResponse | None = None
    recommended_version: VersionResponse | None = None


# ── Pages ─────────────────────────────────────────────────────────────────────


class PageSaveRequest(CamelModel):
    """Body for PUT /projects/{owner}/{slug}/pages/{page}."""

    contents: str = Field("", max_length=75_000, description="Markdown source")


class PageResponse(CamelModel):
    page_id: str
    project_id: str
    name: str
    slug: str
    contents: str
    created_at: datetime
    updated_at: datetime


class PageListResponse(CamelModel):
    pages: list[PageResponse]


# ── User grids ────────────────────────────────────────────────────────────────


class UserSummary(CamelModel):
    user_id: str
    user_name: str


class UserGridResponse(CamelModel):
    """One page of a project's stargazers or watchers, sorted by name."""

    users: list[UserSummary]
    page: int = Field(..., ge=1, description="1-based page number")
    page_size: int
    total: int
