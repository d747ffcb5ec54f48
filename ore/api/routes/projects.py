"""Project route handlers.

Endpoint summary:
  POST   /projects                                   — create a project
  GET    /projects/{owner}/{slug}                    — project page data
  POST   /projects/{owner}/{slug}/visibility         — change visibility (reviewers)
  GET    /projects/{owner}/{slug}/visibility         — visibility history
  POST   /projects/{owner}/{slug}/send-for-approval  — resubmit after requested changes
  DELETE /projects/{owner}/{slug}                    — soft delete (New projects are removed)
  DELETE /projects/{owner}/{slug}/hard               — permanent delete
  GET|POST /projects/{owner}/{slug}/flags            — list (moderators) / raise a flag
  POST   /flags/{flag_id}/resolve | /unresolve       — moderators
  GET|POST /projects/{owner}/{slug}/notes            — moderator notes
  PUT|DELETE /projects/{owner}/{slug}/stars          — star / unstar
  PUT|DELETE /projects/{owner}/{slug}/watchers       — watch / unwatch
  GET    /projects/{owner}/{slug}/stargazers?page=N — users who starred, by name
  GET    /projects/{owner}/{slug}/watchers?page=N   — users watching, by name
  POST   /projects/{owner}/{slug}/discuss            — reply in the forum topic
  GET|POST|DELETE /projects/{owner}/{slug}/icon      — show / upload / reset icon
  GET|POST /projects/{owner}/{slug}/members          — list / invite
  DELETE /projects/{owner}/{slug}/members/{user_name}

Route handlers hold no business logic: they resolve the project and the
acting user, call a service and translate domain errors.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ore.api.dependencies import ProjectAccess, get_project_access
from ore.api.errors import to_http_exception
from ore.auth.dependencies import get_current_user
from ore.config import settings
from ore.db import get_db
from ore.db.models import User
from ore.errors import OreError
from ore.models.projects import (
    CommentRequest,
    DiscussionReplyRequest,
    FlagCreateRequest,
    FlagListResponse,
    FlagResponse,
    InviteRequest,
    MemberListResponse,
    MemberResponse,
    NoteCreateRequest,
    NoteListResponse,
    NoteResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectViewResponse,
    UserGridResponse,
    VisibilityChangeRequest,
    VisibilityChangeResponse,
    VisibilityTransitionResponse,
)
from ore.permissions import Permission, checker, global_permissions, require
from ore.services import moderation, projects as project_service, visibility
from ore.services.membership import PROJECT_DOSSIER
from ore.services.project_files import ProjectFiles, get_project_files

logger = logging.getLogger(__name__)

router = APIRouter()

_ICON_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")


# ── Projects ──────────────────────────────────────────────────────────────────


@router.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createProject",
    summary="Create a project",
)
async def create_project(
    body: ProjectCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ProjectResponse:
    """Create a project owned by the caller or by one of their organizations."""
    try:
        return await project_service.create_project(
            db,
            actor=user,
            name=body.name,
            category=body.category,
            description=body.description,
            organization=body.organization,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/projects/{owner}/{slug}",
    response_model=ProjectViewResponse,
    operation_id="getProject",
    summary="Get a project page",
)
async def get_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> ProjectViewResponse:
    return await project_service.get_project_view(db, access.project)


# ── Visibility ────────────────────────────────────────────────────────────────


@router.post(
    "/projects/{owner}/{slug}/visibility",
    response_model=VisibilityTransitionResponse,
    operation_id="setProjectVisibility",
    summary="Change a project's visibility",
)
async def set_visibility(
    body: VisibilityChangeRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> VisibilityTransitionResponse:
    user = access.require_user()
    try:
        return await visibility.set_visibility(
            db,
            access.project.id,
            body.visibility,
            comment=body.comment,
            actor_id=user.id,
            has_permission=access.has_permission,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/projects/{owner}/{slug}/visibility",
    response_model=list[VisibilityChangeResponse],
    operation_id="listVisibilityChanges",
    summary="Visibility history of a project",
)
async def list_visibility_changes(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> list[VisibilityChangeResponse]:
    if not (access.has_permission(Permission.REVIEWER) or access.has_permission(Permission.EDIT_PROJECT_SETTINGS)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return await visibility.list_visibility_changes(db, access.project.id)


@router.post(
    "/projects/{owner}/{slug}/send-for-approval",
    response_model=VisibilityTransitionResponse | None,
    operation_id="sendForApproval",
    summary="Resubmit a project for review",
)
async def send_for_approval(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> VisibilityTransitionResponse | None:
    user = access.require_user()
    try:
        return await visibility.send_for_approval(
            db, access.project.id, actor_id=user.id, has_permission=access.has_permission
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.delete(
    "/projects/{owner}/{slug}",
    response_model=VisibilityTransitionResponse | None,
    operation_id="softDeleteProject",
    summary="Delete a project (soft)",
)
async def soft_delete_project(
    body: CommentRequest | None = None,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> VisibilityTransitionResponse | None:
    """Soft-delete; a project that was never reviewed is removed outright (returns null)."""
    user = access.require_user()
    try:
        return await visibility.soft_delete_project(
            db,
            access.project.id,
            comment=body.comment if body else "",
            actor_id=user.id,
            has_permission=access.has_permission,
            files=files,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.delete(
    "/projects/{owner}/{slug}/hard",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="hardDeleteProject",
    summary="Delete a project permanently",
)
async def hard_delete_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> None:
    user = access.require_user()
    try:
        await visibility.hard_delete_project(
            db, access.project.id, actor_id=user.id, has_permission=access.has_permission, files=files
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


# ── Flags & notes ─────────────────────────────────────────────────────────────


@router.post(
    "/projects/{owner}/{slug}/flags",
    response_model=FlagResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="flagProject",
    summary="Flag a project for moderator review",
)
async def flag_project(
    body: FlagCreateRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> FlagResponse:
    user = access.require_user()
    try:
        return await moderation.flag_project(
            db, access.project, user_id=user.id, reason=body.reason, comment=body.comment
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/projects/{owner}/{slug}/flags",
    response_model=FlagListResponse,
    operation_id="listProjectFlags",
    summary="List a project's flags (moderators)",
)
async def list_project_flags(
    include_resolved: bool = False,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> FlagListResponse:
    try:
        require(access.has_permission, Permission.MOD_NOTES_AND_FLAGS)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    return await moderation.list_flags(db, project_id=access.project.id, include_resolved=include_resolved)


async def _set_flag_resolved(db: AsyncSession, user: User, flag_id: str, resolved: bool) -> FlagResponse:
    try:
        flag = await moderation.set_flag_resolved(
            db,
            flag_id,
            resolved=resolved,
            actor_id=user.id,
            has_permission=checker(global_permissions(list(user.global_roles or []))),
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
    if flag is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Flag {flag_id} not found")
    return flag


@router.post("/flags/{flag_id}/resolve", response_model=FlagResponse, operation_id="resolveFlag")
async def resolve_flag(
    flag_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> FlagResponse:
    return await _set_flag_resolved(db, user, flag_id, True)


@router.post("/flags/{flag_id}/unresolve", response_model=FlagResponse, operation_id="unresolveFlag")
async def unresolve_flag(
    flag_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> FlagResponse:
    return await _set_flag_resolved(db, user, flag_id, False)


@router.get("/projects/{owner}/{slug}/notes", response_model=NoteListResponse, operation_id="listNotes")
async def list_notes(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> NoteListResponse:
    try:
        return await moderation.list_notes(db, access.project, has_permission=access.has_permission)
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/projects/{owner}/{slug}/notes",
    response_model=NoteResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="addNote",
)
async def add_note(
    body: NoteCreateRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> NoteResponse:
    user = access.require_user()
    try:
        return await moderation.add_note(
            db, access.project, user_id=user.id, message=body.message, has_permission=access.has_permission
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


# ── Stars & watchers ──────────────────────────────────────────────────────────


@router.put("/projects/{owner}/{slug}/stars", operation_id="starProject")
async def star_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    user = access.require_user()
    try:
        added = await project_service.star_project(db, access.project, user.id)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    return {"starred": True, "changed": added}


@router.delete("/projects/{owner}/{slug}/stars", operation_id="unstarProject")
async def unstar_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    user = access.require_user()
    removed = await project_service.unstar_project(db, access.project, user.id)
    return {"starred": False, "changed": removed}


@router.put("/projects/{owner}/{slug}/watchers", operation_id="watchProject")
async def watch_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    user = access.require_user()
    added = await project_service.watch_project(db, access.project, user.id)
    return {"watching": True, "changed": added}


@router.delete("/projects/{owner}/{slug}/watchers", operation_id="unwatchProject")
async def unwatch_project(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    user = access.require_user()
    removed = await project_service.unwatch_project(db, access.project, user.id)
    return {"watching": False, "changed": removed}


@router.get("/projects/{owner}/{slug}/stargazers", response_model=UserGridResponse, operation_id="listStargazers")
async def list_stargazers(
    page: int = Query(1, description="1-based page; values below 1 show the first page"),
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> UserGridResponse:
    return await project_service.list_stargazers(
        db, access.project, page=page, page_size=settings.user_grid_page_size
    )


@router.get("/projects/{owner}/{slug}/watchers", response_model=UserGridResponse, operation_id="listWatchers")
async def list_watchers(
    page: int = Query(1, description="1-based page; values below 1 show the first page"),
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> UserGridResponse:
    return await project_service.list_watchers(
        db, access.project, page=page, page_size=settings.user_grid_page_size
    )


# ── Discussion ────────────────────────────────────────────────────────────────


@router.post(
    "/projects/{owner}/{slug}/discuss",
    status_code=status.HTTP_202_ACCEPTED,
    operation_id="postDiscussionReply",
    summary="Reply in the project's forum topic",
)
async def post_discussion_reply(
    body: DiscussionReplyRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Queue the reply; it is posted by the job dispatcher."""
    user = access.require_user()
    try:
        poster = await project_service.post_discussion_reply(
            db, access.project, actor=user, content=body.content, poster=body.poster
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
    return {"poster": poster}


# ── Icon ──────────────────────────────────────────────────────────────────────


@router.get("/projects/{owner}/{slug}/icon", response_class=FileResponse, operation_id="getProjectIcon")
async def get_icon(
    access: ProjectAccess = Depends(get_project_access),
    files: ProjectFiles = Depends(get_project_files),
) -> FileResponse:
    path = await files.get_icon_path(access.project.owner_name, access.project.slug)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project has no custom icon")
    return FileResponse(path)


def _save_upload(upload: UploadFile, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        shutil.copyfileobj(upload.file, out)


@router.post("/projects/{owner}/{slug}/icon", operation_id="uploadProjectIcon")
async def upload_icon(
    file: UploadFile = File(...),
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> dict[str, str]:
    user = access.require_user()
    filename = Path(file.filename or "").name
    if not filename.lower().endswith(_ICON_SUFFIXES):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Icons must be PNG, JPEG, GIF or WebP")

    staged = files.tmp_dir / str(uuid.uuid4()) / filename
    await asyncio.to_thread(_save_upload, file, staged)
    try:
        path = await project_service.upload_icon(
            db,
            access.project,
            source=staged,
            filename=filename,
            actor_id=user.id,
            has_permission=access.has_permission,
            files=files,
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc
    finally:
        await files.delete_upload(staged)
    return {"icon": path.name}


@router.delete(
    "/projects/{owner}/{slug}/icon",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="resetProjectIcon",
)
async def reset_icon(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
    files: ProjectFiles = Depends(get_project_files),
) -> None:
    user = access.require_user()
    try:
        await project_service.reset_icon(
            db, access.project, actor_id=user.id, has_permission=access.has_permission, files=files
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


# ── Members ───────────────────────────────────────────────────────────────────


@router.get("/projects/{owner}/{slug}/members", response_model=MemberListResponse, operation_id="listMembers")
async def list_members(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> MemberListResponse:
    members = await PROJECT_DOSSIER.members(db, access.project.id)
    return MemberListResponse(members=members, total=len(members))


async def _user_by_name(db: AsyncSession, name: str) -> User:
    user = (await db.execute(select(User).where(User.name == name))).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User '{name}' not found")
    return user


@router.post(
    "/projects/{owner}/{slug}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="inviteMember",
)
async def invite_member(
    body: InviteRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> MemberResponse:
    access.require_user()
    invitee = await _user_by_name(db, body.user_name)
    try:
        require(access.has_permission, Permission.MANAGE_PROJECT_MEMBERS)
        return await PROJECT_DOSSIER.invite(db, access.project.id, invitee.id, body.role)
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.delete(
    "/projects/{owner}/{slug}/members/{user_name}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="removeMember",
)
async def remove_member(
    user_name: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> None:
    actor = access.require_user()
    member = await _user_by_name(db, user_name)
    try:
        require(access.has_permission, Permission.MANAGE_PROJECT_MEMBERS)
        removed = await PROJECT_DOSSIER.remove_member(db, access.project.id, member.id, actor_id=actor.id)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    if removed == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{user_name} is not a member")
