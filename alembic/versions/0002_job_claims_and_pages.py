"""Add claimed_at to ore_jobs and the ore_project_pages table.

Revision ID: 0002_job_claims_and_pages
Revises: 0001_initial_schema
Create Date: 2026-10-19

- claimed_at: when a dispatcher last claimed the job; a ``started`` job whose
  claim is older than the lease is picked up again.
- ore_project_pages: project wiki pages, unique per project and slug.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_job_claims_and_pages"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "ore_jobs",
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "ore_project_pages",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("contents", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["project_id"], ["ore_projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "slug", name="uq_ore_project_pages_slug"),
    )
    op.create_index("ix_ore_project_pages_project_id", "ore_project_pages", ["project_id"])


def downgrade() -> None:
    op.drop_index("ix_ore_project_pages_project_id", table_name="ore_project_pages")
    op.drop_table("ore_project_pages")
    op.drop_column("ore_jobs", "claimed_at")
