"""Project wiki page routes.

Endpoint summary:
  GET    /projects/{owner}/{slug}/pages               — list pages
  GET    /projects/{owner}/{slug}/pages/{page}        — show a page
  GET    /projects/{owner}/{slug}/pages/{page}/edit   — open in the editor (creates it)
  PUT    /projects/{owner}/{slug}/pages/{page}        — save contents
  DELETE /projects/{owner}/{slug}/pages/{page}        — delete
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ore.api.dependencies import ProjectAccess, get_project_access
from ore.api.errors import to_http_exception
from ore.db import get_db
from ore.errors import OreError
from ore.models.projects import PageListResponse, PageResponse, PageSaveRequest
from ore.services import pages as page_service

router = APIRouter()


@router.get("/projects/{owner}/{slug}/pages", response_model=PageListResponse, operation_id="listPages")
async def list_pages(
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> PageListResponse:
    return PageListResponse(pages=await page_service.list_pages(db, access.project))


@router.get("/projects/{owner}/{slug}/pages/{page}", response_model=PageResponse, operation_id="getPage")
async def get_page(
    page: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> PageResponse:
    try:
        return await page_service.get_page(db, access.project, page)
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.get("/projects/{owner}/{slug}/pages/{page}/edit", response_model=PageResponse, operation_id="editPage")
async def edit_page(
    page: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> PageResponse:
    access.require_user()
    try:
        return await page_service.open_page_editor(db, access.project, page, has_permission=access.has_permission)
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.put("/projects/{owner}/{slug}/pages/{page}", response_model=PageResponse, operation_id="savePage")
async def save_page(
    page: str,
    body: PageSaveRequest,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> PageResponse:
    user = access.require_user()
    try:
        return await page_service.save_page(
            db, access.project, page, body.contents, actor_id=user.id, has_permission=access.has_permission
        )
    except OreError as exc:
        raise to_http_exception(exc) from exc


@router.delete(
    "/projects/{owner}/{slug}/pages/{page}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="deletePage",
)
async def delete_page(
    page: str,
    access: ProjectAccess = Depends(get_project_access),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Irreversibly delete a page."""
    user = access.require_user()
    try:
        await page_service.delete_page(db, access.project, page, actor_id=user.id, has_permission=access.has_permission)
    except OreError as exc:
        raise to_http_exception(exc) from exc
