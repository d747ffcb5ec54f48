"""Initial Ore schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates accounts (users, organizations, organization roles, action log),
projects with their channels, assets, versions and platforms, project roles,
moderation tables (flags, notes, visibility changes), stars, watchers and the
job outbox.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    # ── Accounts ──────────────────────────────────────────────────────────────
    op.create_table(
        "ore_users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("global_roles", sa.JSON(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_users_name", "ore_users", ["name"], unique=True)

    op.create_table(
        "ore_organizations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_ore_organizations_name", "ore_organizations", ["name"], unique=True)

    op.create_table(
        "ore_organization_roles",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("role_type", sa.String(32), nullable=False),
        sa.Column("is_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["ore_organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_ore_organization_roles_user_org"),
    )
    op.create_index("ix_ore_organization_roles_user_id", "ore_organization_roles", ["user_id"])
    op.create_index("ix_ore_organization_roles_organization_id", "ore_organization_roles", ["organization_id"])

    op.create_table(
        "ore_logged_actions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("address", sa.String(64), nullable=False, server_default=""),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("context_id", sa.String(36), nullable=True),
        sa.Column("new_state", sa.Text(), nullable=False, server_default=""),
        sa.Column("old_state", sa.Text(), nullable=False, server_default=""),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_logged_actions_user_id", "ore_logged_actions", ["user_id"])
    op.create_index("ix_ore_logged_actions_action", "ore_logged_actions", ["action"])
    op.create_index("ix_ore_logged_actions_context_id", "ore_logged_actions", ["context_id"])

    # ── Projects ──────────────────────────────────────────────────────────────
    op.create_table(
        "ore_projects",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("owner_name", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="misc"),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("visibility", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("recommended_version_id", sa.String(36), nullable=True),
        sa.Column("topic_id", sa.Integer(), nullable=True),
        sa.Column("post_id", sa.Integer(), nullable=True),
        sa.Column("downloads", sa.BigInteger(), nullable=False, server_default="0"),
        _created_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_name", "slug", name="uq_ore_projects_owner_slug"),
    )
    op.create_index("ix_ore_projects_owner_id", "ore_projects", ["owner_id"])
    op.create_index("ix_ore_projects_visibility", "ore_projects", ["visibility"])

    op.create_table(
        "ore_channels",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(32), nullable=False),
        sa.Column("color", sa.Integer(), nullable=False),
        sa.Column("is_non_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "name", name="uq_ore_channels_project_name"),
        sa.UniqueConstraint("project_id", "color", name="uq_ore_channels_project_color"),
    )
    op.create_index("ix_ore_channels_project_id", "ore_channels", ["project_id"])

    op.create_table(
        "ore_assets",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("hash", sa.String(32), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "hash", name="uq_ore_assets_project_hash"),
    )
    op.create_index("ix_ore_assets_project_id", "ore_assets", ["project_id"])

    op.create_table(
        "ore_versions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("channel_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("author_id", sa.String(36), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("plugin_asset_id", sa.String(36), nullable=False),
        sa.Column("stability", sa.String(20), nullable=False, server_default="stable"),
        sa.Column("release_type", sa.String(20), nullable=True),
        sa.Column("uses_mixin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("create_forum_post", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("post_id", sa.Integer(), nullable=True),
        sa.Column("downloads", sa.BigInteger(), nullable=False, server_default="0"),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["ore_channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["ore_users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["plugin_asset_id"], ["ore_assets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "name", name="uq_ore_versions_project_name"),
    )
    op.create_index("ix_ore_versions_project_id", "ore_versions", ["project_id"])
    op.create_index("ix_ore_versions_channel_id", "ore_versions", ["channel_id"])

    op.create_table(
        "ore_version_platforms",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("version_id", sa.String(36), nullable=False),
        sa.Column("platform", sa.String(64), nullable=False),
        sa.Column("platform_version", sa.String(64), nullable=True),
        sa.Column("platform_coarse_version", sa.String(32), nullable=True),
        sa.ForeignKeyConstraint(["version_id"], ["ore_versions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_version_platforms_version_id", "ore_version_platforms", ["version_id"])

    op.create_table(
        "ore_project_roles",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("role_type", sa.String(32), nullable=False),
        sa.Column("is_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "project_id", name="uq_ore_project_roles_user_project"),
    )
    op.create_index("ix_ore_project_roles_user_id", "ore_project_roles", ["user_id"])
    op.create_index("ix_ore_project_roles_project_id", "ore_project_roles", ["project_id"])

    # ── Moderation ────────────────────────────────────────────────────────────
    op.create_table(
        "ore_project_flags",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(36), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["ore_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_project_flags_project_id", "ore_project_flags", ["project_id"])
    op.create_index("ix_ore_project_flags_user_id", "ore_project_flags", ["user_id"])

    op.create_table(
        "ore_project_notes",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_project_notes_project_id", "ore_project_notes", ["project_id"])

    op.create_table(
        "ore_project_visibility_changes",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("old_visibility", sa.Integer(), nullable=False),
        sa.Column("new_visibility", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False, server_default=""),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ore_project_visibility_changes_project_id", "ore_project_visibility_changes", ["project_id"]
    )
    op.create_index(
        "ix_ore_project_visibility_changes_created_at", "ore_project_visibility_changes", ["created_at"]
    )

    # ── Stars & watchers ──────────────────────────────────────────────────────
    for table in ("ore_project_stars", "ore_project_watchers"):
        op.create_table(
            table,
            sa.Column("id", sa.String(36), nullable=False),
            sa.Column("project_id", sa.String(36), nullable=False),
            sa.Column("user_id", sa.String(36), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "user_id", name=f"uq_{table}"),
        )
        op.create_index(f"ix_{table}_project_id", table, ["project_id"])
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])

    # ── Job outbox ────────────────────────────────────────────────────────────
    op.create_table(
        "ore_jobs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="not_started"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "retry_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ore_jobs_state_retry_at", "ore_jobs", ["state", "retry_at"])


def downgrade() -> None:
    op.drop_index("ix_ore_jobs_state_retry_at", table_name="ore_jobs")
    op.drop_table("ore_jobs")
    for table in ("ore_project_watchers", "ore_project_stars"):
        op.drop_index(f"ix_{table}_user_id", table_name=table)
        op.drop_index(f"ix_{table}_project_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_ore_project_visibility_changes_created_at", table_name="ore_project_visibility_changes")
    op.drop_index("ix_ore_project_visibility_changes_project_id", table_name="ore_project_visibility_changes")
    op.drop_table("ore_project_visibility_changes")
    op.drop_index("ix_ore_project_notes_project_id", table_name="ore_project_notes")
    op.drop_table("ore_project_notes")
    op.drop_index("ix_ore_project_flags_user_id", table_name="ore_project_flags")
    op.drop_index("ix_ore_project_flags_project_id", table_name="ore_project_flags")
    op.drop_table("ore_project_flags")
    op.drop_index("ix_ore_project_roles_project_id", table_name="ore_project_roles")
    op.drop_index("ix_ore_project_roles_user_id", table_name="ore_project_roles")
    op.drop_table("ore_project_roles")
    op.drop_index("ix_ore_version_platforms_version_id", table_name="ore_version_platforms")
    op.drop_table("ore_version_platforms")
    op.drop_index("ix_ore_versions_channel_id", table_name="ore_versions")
    op.drop_index("ix_ore_versions_project_id", table_name="ore_versions")
    op.drop_table("ore_versions")
    op.drop_index("ix_ore_assets_project_id", table_name="ore_assets")
    op.drop_table("ore_assets")
    op.drop_index("ix_ore_channels_project_id", table_name="ore_channels")
    op.drop_table("ore_channels")
    op.drop_index("ix_ore_projects_visibility", table_name="ore_projects")
    op.drop_index("ix_ore_projects_owner_id", table_name="ore_projects")
    op.drop_table("ore_projects")
    op.drop_index("ix_ore_logged_actions_context_id", table_name="ore_logged_actions")
    op.drop_index("ix_ore_logged_actions_action", table_name="ore_logged_actions")
    op.drop_index("ix_ore_logged_actions_user_id", table_name="ore_logged_actions")
    op.drop_table("ore_logged_actions")
    op.drop_index("ix_ore_organization_roles_organization_id", table_name="ore_organization_roles")
    op.drop_index("ix_ore_organization_roles_user_id", table_name="ore_organization_roles")
    op.drop_table("ore_organization_roles")
    op.drop_index("ix_ore_organizations_name", table_name="ore_organizations")
    op.drop_table("ore_organizations")
    op.drop_index("ix_ore_users_name", table_name="ore_users")
    op.drop_table("ore_users")
