"""
SQLAlchemy ORM models for Ore accounts.

Tables:
- ore_users: User accounts (mirrors the SSO identity) with global roles
- ore_organizations: Organizations, each backed by its own user account
- ore_organization_roles: Pending or accepted organization memberships
- ore_logged_actions: Append-only user action log
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column

from ore.db.database import Base


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class User(Base):
    """
    A user account.

    ``global_roles`` is a JSON list of global role names (``"admin"``,
    ``"moderator"``, ``"reviewer"``...) that grant site-wide permissions on
    top of any per-project or per-organization role.
    """
    __tablename__ = "ore_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    global_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id[:8]}..., name={self.name})>"


class Organization(Base):
    """
    An organization.

    Organizations own projects through a backing user account
    (``user_id``): the project's ``owner_id`` is that account, and project
    invites addressed to the organization are role rows for that account.
    """
    __tablename__ = "ore_organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class OrganizationUserRole(Base):
    """A role a user holds (or has been invited to) in an organization.

    ``is_accepted`` is False until the invited user accepts.  The unique
    constraint guarantees at most one role row per (user, organization).
    """
    __tablename__ = "ore_organization_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_ore_organization_roles_user_org"),
        Index("ix_ore_organization_roles_organization_id", "organization_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ore_organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class LoggedAction(Base):
    """
    One entry in the user action log.

    ``context_id`` references the affected entity (usually a project) but is
    deliberately not a foreign key: entries outlive hard-deleted projects.
    """
    __tablename__ = "ore_logged_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    context_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    new_state: Mapped[str] = mapped_column(Text, nullable=False, default="")
    old_state: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
