"""Project wiki pages.

Pages are addressed by the slug of their name, so ``Getting Started`` and
``getting-started`` name different pages but ``Getting Started`` and
``Getting  Started`` do not.  Opening a page in the editor creates it when
it does not exist yet; saving replaces the contents wholesale.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ore.db.project_models import Page, Project
from ore.errors import InvalidPageName, PageNotFound
from ore.models.projects import PageResponse
from ore.permissions import Permission, PermissionCheck, require
from ore.services.action_log import LoggedActionType, log_action
from ore.util import compact, slugify

logger = logging.getLogger(__name__)

MAX_PAGE_NAME_LENGTH = 25


def _to_page_response(page: Page) -> PageResponse:
    return PageResponse(
        page_id=page.id,
        project_id=page.project_id,
        name=page.name,
        slug=page.slug,
        contents=page.contents,
        created_at=page.created_at,
        updated_at=page.updated_at,
    )


def _page_slug(name: str) -> str:
    slug = slugify(name)
    if not slug or len(compact(name)) > MAX_PAGE_NAME_LENGTH:
        raise InvalidPageName(
            f"Page name {name!r} must have a letter or digit and at most {MAX_PAGE_NAME_LENGTH} characters"
        )
    return slug


async def _find_page(session: AsyncSession, project_id: str, name: str) -> Page | None:
    stmt = select(Page).where(Page.project_id == project_id, Page.slug == _page_slug(name))
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_pages(session: AsyncSession, project: Project) -> list[PageResponse]:
    stmt = select(Page).where(Page.project_id == project.id).order_by(Page.name)
    return [_to_page_response(p) for p in (await session.execute(stmt)).scalars().all()]


async def get_page(session: AsyncSession, project: Project, name: str) -> PageResponse:
    """Return the page called *name*.

    Raises:
        PageNotFound: If the project has no such page.
        InvalidPageName: If *name* cannot be a page name at all.
    """
    page = await _find_page(session, project.id, name)
    if page is None:
        raise PageNotFound(f"{project.owner_name}/{project.slug} has no page {name!r}")
    return _to_page_response(page)


async def _get_or_create(session: AsyncSession, project: Project, name: str) -> tuple[Page, bool]:
    page = await _find_page(session, project.id, name)
    if page is not None:
        return page, False
    page = Page(project_id=project.id, name=compact(name), slug=_page_slug(name), contents="")
    session.add(page)
    await session.flush()
    return page, True


async def open_page_editor(
    session: AsyncSession,
    project: Project,
    name: str,
    *,
    has_permission: PermissionCheck,
) -> PageResponse:
    """Return the page for editing, creating an empty one if it is missing."""
    require(has_permission, Permission.EDIT_PAGES)
    page, created = await _get_or_create(session, project, name)
    if created:
        logger.info("✅ Created page %s on %s/%s", page.slug, project.owner_name, project.slug)
    return _to_page_response(page)


async def save_page(
    session: AsyncSession,
    project: Project,
    name: str,
    contents: str,
    *,
    actor_id: str,
    has_permission: PermissionCheck,
) -> PageResponse:
    """Replace the contents of the page called *name*, creating it if needed.

    Raises:
        PermissionDenied: Without ``EDIT_PAGES``.
        InvalidPageName: If *name* cannot be a page name.
    """
    require(has_permission, Permission.EDIT_PAGES)
    page, _ = await _get_or_create(session, project, name)
    old = page.contents
    page.contents = contents
    await session.flush()
    await session.refresh(page)
    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_page_edited,
        context_id=project.id,
        new_state=contents,
        old_state=old,
    )
    return _to_page_response(page)


async def delete_page(
    session: AsyncSession,
    project: Project,
    name: str,
    *,
    actor_id: str,
    has_permission: PermissionCheck,
) -> None:
    """Irreversibly delete the page called *name*.

    Raises:
        PermissionDenied: Without ``EDIT_PAGES``.
        PageNotFound: If the project has no such page.
    """
    require(has_permission, Permission.EDIT_PAGES)
    page = await _find_page(session, project.id, name)
    if page is None:
        raise PageNotFound(f"{project.owner_name}/{project.slug} has no page {name!r}")
    slug = page.slug
    await session.delete(page)
    await session.flush()
    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_page_deleted,
        context_id=project.id,
        new_state="",
        old_state=slug,
    )
    logger.info("✅ Deleted page %s on %s/%s", slug, project.owner_name, project.slug)
