"""Version routes: upload, list, show, download, delete.

Uploads are multipart (``file`` plus form fields) and rate limited per client
address.  The jar is staged under the uploads tmp dir, parsed, then handed to
the version service which moves it into place; the staged copy is always
removed afterwards.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from ore.api.dependencies import ProjectAccess, get_project_access
from ore.api.errors import to_http_exception
from ore.config import DEFAULT_CHANNEL_NAME, settings
from ore.db import get_db
from ore.errors import ChannelNotFound, OreError
from ore.models.projects import (
    ReleaseType,
    Stability,
    VersionListResponse,
    VersionResponse,
    VersionUploadResponse,
)
from ore.permissions import Permission, require
from ore.services import channels as channel_service, versions as version_service
from ore.services.plugin_ingest import ingest_upload
from ore.services.project_files import ProjectFiles, get_project_files

router = APIRouter()
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


@router.post(
    "/projects/{owner}/{slug}/versions",
    response_model=VersionUploadResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="uploadVersion",
    responses={
        400: {"description": "The file is not a readable plugin jar"},
        409: {"description": "A version with this name or file already exists"},
        413: {"description": "File too large"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit(settings.upload_rate_limit)
async def upload_version(
    request: Request,
    file: UploadFile = File(...),
    channel: str = Form(DEFAULT_CHANNEL_NAME),
    description: str | None = Form(None),
    stability: Stability = Form(Stability.stable),
    release_type: ReleaseType | None = Form(None),
    create_forum_post: bool = Form(True),
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> VersionUploadResponse:
    """Upload a plugin jar (or a zip wrapping one) as a new version."""
    user = access.require_user()
    try:
        require(access.has_permission, Permission.CREATE_VERSION)
    except OreError as exc:
        raise to_http_exception(exc) from exc

    if file.size is not None and file.size > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_upload_bytes} bytes",
        )

    try:
        plugin = await ingest_upload(file.file, file.filename or "plugin.jar", user.id, files.tmp_dir)
    except OreError as exc:
        logger.warning("⚠️ Rejected upload %s for %s: %s", file.filename, access.project.slug, exc)
        raise to_http_exception(exc) from exc

    try:
        target = await channel_service.get_channel(db, access.project.id, channel)
        if target is None:
            raise ChannelNotFound(f"Channel '{channel}' not found")
        return await version_service.create_version(
            db,
            plugin,
            project=access.project,
            channel_id=target.id,
            files=files,
            description=description,
            create_forum_post=create_forum_post,
            stability=stability,
            release_type=release_type,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
    finally:
        await files.delete_upload(plugin.path)


@router.get(
    "/projects/{owner}/{slug}/versions",
    response_model=VersionListResponse,
    operation_id="listVersions",
)
async def list_versions(
    channel: str | None = None,
    limit: int = 50,
    offset: int = 0,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> VersionListResponse:
    limit = max(1, min(limit, 100))
    return await version_service.list_versions(
        db, access.project.id, channel=channel, limit=limit, offset=max(0, offset)
    )


@router.get(
    "/projects/{owner}/{slug}/versions/{version}",
    response_model=VersionResponse,
    operation_id="getVersion",
)
async def get_version(
    version: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> VersionResponse:
    found = await version_service.get_version(db, access.project.id, version)
    if found is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Version {version} not found")
    return found


@router.get(
    "/projects/{owner}/{slug}/versions/{version}/download",
    response_class=FileResponse,
    operation_id="downloadVersion",
)
async def download_version(
    version: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> FileResponse:
    result = await version_service.record_download(db, access.project, version, files=files)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Version {version} not found")
    found, path = result
    if not path.is_file():
        logger.error("❌ File missing for %s/%s %s: %s", access.project.owner_name, access.project.slug, version, path)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Version file is missing")
    return FileResponse(path, filename=found.asset.filename, media_type="application/java-archive")


@router.delete(
    "/projects/{owner}/{slug}/versions/{version}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="deleteVersion",
)
async def delete_version(
    version: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> None:
    user = access.require_user()
    try:
        deleted = await version_service.delete_version(
            db,
            access.project,
            version,
            actor_id=user.id,
            has_permission=access.has_permission,
            files=files,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Version {version} not found")
