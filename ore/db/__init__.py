"""
Database module for Ore.

Provides async SQLAlchemy support with PostgreSQL and SQLite.
"""
from __future__ import annotations

from ore.db.database import (
    get_db,
    init_db,
    close_db,
    AsyncSessionLocal,
)
from ore.db.models import User, Organization, OrganizationUserRole, LoggedAction
from ore.db import project_models as project_models  # noqa: F401 — register with Base
from ore.db import job_models as job_models  # noqa: F401 — register with Base

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "AsyncSessionLocal",
    "User",
    "Organization",
    "OrganizationUserRole",
    "LoggedAction",
]
