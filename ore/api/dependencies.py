"""Route-level dependencies shared by the project-scoped routers."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ore.auth.dependencies import get_optional_user
from ore.db import get_db
from ore.db.models import User
from ore.db.project_models import Project
from ore.errors import ProjectNotFound
from ore.permissions import Permission, PermissionCheck, checker
from ore.services import projects as project_service
from ore.services.membership import project_permissions

logger = logging.getLogger(__name__)


@dataclass
class ProjectAccess:
    """A resolved project plus what the requesting user may do with it."""

    project: Project
    user: User | None
    permissions: Permission

    @property
    def has_permission(self) -> PermissionCheck:
        return checker(self.permissions)

    def require_user(self) -> User:
        if self.user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Access token required.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return self.user


async def get_project_access(
    owner: str,
    slug: str,
    db: AsyncSession = Depends(get_db),
    user: User | None = Depends(get_optional_user),
) -> ProjectAccess:
    """Resolve ``/{owner}/{slug}``; hidden projects 404 for those who may not see them."""
    try:
        project = await project_service.get_project(db, owner, slug)
    except ProjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {owner}/{slug} not found")
    perms = await project_permissions(db, project, user)
    if not project_service.can_view(project, checker(perms)):
        logger.info("Hidden project %s/%s requested by %s", owner, slug, user.name if user else "anonymous")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {owner}/{slug} not found")
    return ProjectAccess(project=project, user=user, permissions=perms)
