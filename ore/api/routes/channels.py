"""Channel routes for a project."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ore.api.dependencies import ProjectAccess, get_project_access
from ore.api.errors import to_http_exception
from ore.db import get_db
from ore.errors import OreError
from ore.models.projects import (
    ChannelCreateRequest,
    ChannelListResponse,
    ChannelResponse,
    ChannelUpdateRequest,
)
from ore.services import channels as channel_service
from ore.services.project_files import ProjectFiles, get_project_files

router = APIRouter()


@router.get("/projects/{owner}/{slug}/channels", response_model=ChannelListResponse, operation_id="listChannels")
async def list_channels(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> ChannelListResponse:
    return await channel_service.list_channels(db, access.project.id)


@router.post(
    "/projects/{owner}/{slug}/channels",
    response_model=ChannelResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createChannel",
)
async def create_channel(
    body: ChannelCreateRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> ChannelResponse:
    access.require_user()
    try:
        return await channel_service.create_channel(
            db,
            access.project,
            name=body.name,
            color=body.color,
            is_non_reviewed=body.is_non_reviewed,
            has_permission=access.has_permission,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.put(
    "/projects/{owner}/{slug}/channels/{name}",
    response_model=ChannelResponse,
    operation_id="updateChannel",
)
async def update_channel(
    name: str,
    body: ChannelUpdateRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> ChannelResponse:
    access.require_user()
    try:
        return await channel_service.update_channel(
            db,
            access.project,
            name,
            new_name=body.name,
            color=body.color,
            is_non_reviewed=body.is_non_reviewed,
            has_permission=access.has_permission,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.delete(
    "/projects/{owner}/{slug}/channels/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="deleteChannel",
)
async def delete_channel(
    name: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> None:
    """Delete a channel and every version in it."""
    user = access.require_user()
    try:
        await channel_service.delete_channel(
            db, access.project, name, actor_id=user.id, has_permission=access.has_permission, files=files
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
