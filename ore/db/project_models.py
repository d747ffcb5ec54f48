"""SQLAlchemy ORM models for projects and everything hanging off them.

Tables:
- ore_projects: Hosted plugin projects (one per owner/slug pair)
- ore_channels: Named release tracks inside a project
- ore_assets: Uploaded plugin binaries, identified by MD5 content hash
- ore_versions: Released plugin versions (one asset, one channel each)
- ore_version_platforms: Platforms a version declares a dependency on
- ore_project_roles: Pending or accepted project memberships
- ore_project_flags: Moderation flags raised by users
- ore_project_notes: Moderator notes
- ore_project_visibility_changes: Insert-only visibility audit trail
- ore_project_stars / ore_project_watchers: Per-user project bookmarks
- ore_project_pages: Wiki pages
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ore.db.database import Base


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class Project(Base):
    """A hosted plugin project.

    ``owner_name`` is denormalised from the owning user so that
    ``/{owner}/{slug}`` lookups need no join.  ``visibility`` stores the
    integer value of ``ore.models.projects.Visibility``.  ``topic_id`` and
    ``post_id`` link the project to its forum topic once the job dispatcher
    has created it.
    """

    __tablename__ = "ore_projects"
    __table_args__ = (
        UniqueConstraint("owner_name", "slug", name="uq_ore_projects_owner_slug"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="misc")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    visibility: Mapped[int] = mapped_column(Integer, nullable=False, default=2, index=True)
    recommended_version_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    topic_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    post_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    downloads: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    channels: Mapped[list[Channel]] = relationship(
        "Channel", back_populates="project", cascade="all, delete-orphan"
    )
    versions: Mapped[list[Version]] = relationship(
        "Version", back_populates="project", cascade="all, delete-orphan"
    )
    assets: Mapped[list[Asset]] = relationship(
        "Asset", back_populates="project", cascade="all, delete-orphan"
    )
    roles: Mapped[list[ProjectUserRole]] = relationship(
        "ProjectUserRole", back_populates="project", cascade="all, delete-orphan"
    )
    flags: Mapped[list[Flag]] = relationship(
        "Flag", back_populates="project", cascade="all, delete-orphan"
    )
    notes: Mapped[list[Note]] = relationship(
        "Note", back_populates="project", cascade="all, delete-orphan"
    )
    visibility_changes: Mapped[list[ProjectVisibilityChange]] = relationship(
        "ProjectVisibilityChange", back_populates="project", cascade="all, delete-orphan"
    )
    stars: Mapped[list[ProjectStar]] = relationship(
        "ProjectStar", back_populates="project", cascade="all, delete-orphan"
    )
    watchers: Mapped[list[ProjectWatcher]] = relationship(
        "ProjectWatcher", back_populates="project", cascade="all, delete-orphan"
    )
    pages: Mapped[list[Page]] = relationship(
        "Page", back_populates="project", cascade="all, delete-orphan"
    )


class Channel(Base):
    """A named release track within a project (e.g. "Release", "Beta").

    ``color`` is a ``ChannelColor`` id, unique per project.  Versions in a
    channel flagged ``is_non_reviewed`` skip the review queue.
    """

    __tablename__ = "ore_channels"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_ore_channels_project_name"),
        UniqueConstraint("project_id", "color", name="uq_ore_channels_project_color"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    color: Mapped[int] = mapped_column(Integer, nullable=False)
    is_non_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="channels")


class Asset(Base):
    """An uploaded plugin binary.

    ``hash`` is the MD5 hex digest of the file bytes, computed once at
    ingestion.  The (project_id, hash) constraint prevents the same bytes from
    being uploaded twice to one project.
    """

    __tablename__ = "ore_assets"
    __table_args__ = (
        UniqueConstraint("project_id", "hash", name="uq_ore_assets_project_hash"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    hash: Mapped[str] = mapped_column(String(32), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="assets")


class Version(Base):
    """A released plugin version.

    Tags (``stability``, ``release_type``, ``uses_mixin``) come from the
    upload form and the parsed plugin metadata.
    """

    __tablename__ = "ore_versions"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_ore_versions_project_name"),
        Index("ix_ore_versions_channel_id", "channel_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    author_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    plugin_asset_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_assets.id", ondelete="CASCADE"),
        nullable=False,
    )
    stability: Mapped[str] = mapped_column(String(20), nullable=False, default="stable")
    release_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    uses_mixin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    create_forum_post: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    post_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    downloads: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="versions")
    channel: Mapped[Channel] = relationship("Channel")
    asset: Mapped[Asset] = relationship("Asset")
    platforms: Mapped[list[VersionPlatform]] = relationship(
        "VersionPlatform", back_populates="version", cascade="all, delete-orphan"
    )


class VersionPlatform(Base):
    """A platform dependency declared by a version (e.g. spongeapi 7.2)."""

    __tablename__ = "ore_version_platforms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    version_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    platform_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    platform_coarse_version: Mapped[str | None] = mapped_column(String(32), nullable=True)

    version: Mapped[Version] = relationship("Version", back_populates="platforms")


class ProjectUserRole(Base):
    """A role a user holds (or has been invited to) on a project."""

    __tablename__ = "ore_project_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_ore_project_roles_user_project"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="roles")


class Flag(Base):
    """A user report against a project, pending moderator review."""

    __tablename__ = "ore_project_flags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="flags")


class Note(Base):
    """A moderator note attached to a project."""

    __tablename__ = "ore_project_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="notes")


class ProjectVisibilityChange(Base):
    """One visibility transition.  Rows are never updated after insert."""

    __tablename__ = "ore_project_visibility_changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    old_visibility: Mapped[int] = mapped_column(Integer, nullable=False)
    new_visibility: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, index=True
    )

    project: Mapped[Project] = relationship("Project", back_populates="visibility_changes")


class ProjectStar(Base):
    """A single user's star on a project (one row per user×project pair)."""

    __tablename__ = "ore_project_stars"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_ore_project_stars"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="stars")


class ProjectWatcher(Base):
    """A user watching a project for new versions."""

    __tablename__ = "ore_project_watchers"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_ore_project_watchers"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="watchers")


class Page(Base):
    """A documentation page in a project's wiki, addressed by slug."""

    __tablename__ = "ore_project_pages"
    __table_args__ = (UniqueConstraint("project_id", "slug", name="uq_ore_project_pages_slug"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    contents: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    project: Mapped[Project] = relationship("Project", back_populates="pages")
