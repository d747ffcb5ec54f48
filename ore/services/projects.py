"""Project persistence adapter — creation, lookup and the project page.

Also owns the small per-user project relations (stars, watchers), forum
discussion replies and project icons.  Visibility changes and deletion live
in ``ore.services.visibility``; flags and notes in
``ore.services.moderation``.
"""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ore.db.models import User
from ore.db.project_models import (
    Flag,
    Note,
    Project,
    ProjectStar,
    ProjectUserRole,
    ProjectWatcher,
)
from ore.errors import InvalidProjectName, NoForumTopic, PermissionDenied, ProjectExists, ProjectNotFound
from ore.models.projects import (
    Category,
    ProjectResponse,
    ProjectViewResponse,
    UserGridResponse,
    UserSummary,
    Visibility,
)
from ore.permissions import Permission, PermissionCheck, ProjectRole, checker, require
from ore.services.action_log import LoggedActionType, log_action
from ore.services.channels import create_default_channel
from ore.services.jobs import JobDescriptor, enqueue, enqueue_best_effort
from ore.services.membership import (
    PROJECT_DOSSIER,
    get_organization,
    organization_permissions,
)
from ore.services.project_files import ProjectFiles
from ore.services.responses import to_project_response
from ore.services.versions import count_versions, get_version_by_id
from ore.services.visibility import get_last_visibility_change
from ore.util import compact, is_valid_project_name, slugify

logger = logging.getLogger(__name__)


async def create_project(
    session: AsyncSession,
    *,
    actor: User,
    name: str,
    category: Category = Category.misc,
    description: str = "",
    organization: str | None = None,
    create_forum_topic: bool = True,
) -> ProjectResponse:
    """Create a project owned by *actor* or by one of their organizations.

    The project starts as New with a default channel, and its owner holds
    the accepted owner role.  A forum topic sync job is queued unless
    *create_forum_topic* is false.

    Raises:
        PermissionDenied: If *organization* is given and *actor* may not
            create projects there (or it does not exist).
        InvalidProjectName: If *name* has characters outside letters,
            digits, spaces, ``.``, ``_`` and ``-``, or none of the first two.
        ProjectExists: If the owner already has a project with this slug.
    """
    if not is_valid_project_name(name):
        raise InvalidProjectName(f"'{name}' is not a valid project name")

    owner = actor
    if organization is not None:
        org = await get_organization(session, organization)
        if org is None:
            raise PermissionDenied(Permission.CREATE_PROJECT, f"Organization '{organization}' not found")
        perms = await organization_permissions(session, org, actor)
        require(checker(perms), Permission.CREATE_PROJECT)
        org_user = await session.get(User, org.user_id)
        if org_user is None:
            raise PermissionDenied(Permission.CREATE_PROJECT, f"Organization '{organization}' has no account")
        owner = org_user

    name = compact(name)
    slug = slugify(name)
    existing = await session.execute(
        select(Project.id).where(Project.owner_name == owner.name, func.lower(Project.slug) == slug.lower())
    )
    if existing.first() is not None:
        raise ProjectExists(f"{owner.name} already has a project named '{name}'")

    project = Project(
        owner_id=owner.id,
        owner_name=owner.name,
        name=name,
        slug=slug,
        category=category.value,
        description=description,
        visibility=Visibility.New.value,
    )
    session.add(project)
    await session.flush()

    await create_default_channel(session, project.id)
    session.add(
        ProjectUserRole(
            user_id=owner.id,
            project_id=project.id,
            role_type=ProjectRole.owner.value,
            is_accepted=True,
        )
    )
    await session.flush()
    if create_forum_topic:
        await enqueue_best_effort(session, JobDescriptor.update_project_topic(project.id))

    logger.info("✅ Created project %s/%s", owner.name, slug)
    return to_project_response(project)


async def get_project(session: AsyncSession, owner: str, slug: str) -> Project:
    """Return the project at ``/{owner}/{slug}`` (slug match ignores case).

    Raises:
        ProjectNotFound: If there is none.
    """
    stmt = select(Project).where(Project.owner_name == owner, func.lower(Project.slug) == slug.lower())
    project = (await session.execute(stmt)).scalar_one_or_none()
    if project is None:
        raise ProjectNotFound(f"Project {owner}/{slug} not found")
    return project


def can_view(project: Project, has_permission: PermissionCheck) -> bool:
    """Whether someone with *has_permission* may see *project* at all.

    Hidden projects are visible to staff with ``VIEW_HIDDEN``; projects
    waiting on changes or approval are also visible to their own editors.
    """
    visibility = Visibility(project.visibility)
    if visibility.is_public or has_permission(Permission.VIEW_HIDDEN):
        return True
    if visibility is Visibility.SoftDelete:
        return False
    return has_permission(Permission.EDIT_PROJECT_SETTINGS)


async def _count(session: AsyncSession, stmt) -> int:
    return (await session.execute(stmt)).scalar_one()


async def get_project_view(session: AsyncSession, project: Project) -> ProjectViewResponse:
    """Assemble everything the project page shows."""
    recommended = (
        await get_version_by_id(session, project.recommended_version_id)
        if project.recommended_version_id
        else None
    )
    return ProjectViewResponse(
        project=to_project_response(project),
        version_count=await count_versions(session, project.id),
        members=await PROJECT_DOSSIER.members(session, project.id),
        flag_count=await _count(
            session,
            select(func.count(Flag.id)).where(Flag.project_id == project.id, Flag.is_resolved.is_(False)),
        ),
        note_count=await _count(session, select(func.count(Note.id)).where(Note.project_id == project.id)),
        star_count=await _count(
            session, select(func.count(ProjectStar.id)).where(ProjectStar.project_id == project.id)
        ),
        watcher_count=await _count(
            session, select(func.count(ProjectWatcher.id)).where(ProjectWatcher.project_id == project.id)
        ),
        last_visibility_change=await get_last_visibility_change(session, project.id),
        recommended_version=recommended,
    )


# ---------------------------------------------------------------------------
# Stars & watchers
# ---------------------------------------------------------------------------


async def _add_link(session: AsyncSession, row: ProjectStar | ProjectWatcher) -> bool:
    try:
        async with session.begin_nested():
            session.add(row)
            await session.flush()
    except IntegrityError:
        return False
    return True


async def star_project(session: AsyncSession, project: Project, user_id: str) -> bool:
    """Star *project* for *user_id*; return False if it was already starred.

    Raises:
        PermissionDenied: If *user_id* owns the project.
    """
    if project.owner_id == user_id:
        raise PermissionDenied(Permission.NONE, "You cannot star your own project")
    return await _add_link(session, ProjectStar(project_id=project.id, user_id=user_id))


async def unstar_project(session: AsyncSession, project: Project, user_id: str) -> bool:
    stmt = select(ProjectStar).where(ProjectStar.project_id == project.id, ProjectStar.user_id == user_id)
    star = (await session.execute(stmt)).scalar_one_or_none()
    if star is None:
        return False
    await session.delete(star)
    await session.flush()
    return True


async def watch_project(session: AsyncSession, project: Project, user_id: str) -> bool:
    return await _add_link(session, ProjectWatcher(project_id=project.id, user_id=user_id))


async def unwatch_project(session: AsyncSession, project: Project, user_id: str) -> bool:
    stmt = select(ProjectWatcher).where(ProjectWatcher.project_id == project.id, ProjectWatcher.user_id == user_id)
    watcher = (await session.execute(stmt)).scalar_one_or_none()
    if watcher is None:
        return False
    await session.delete(watcher)
    await session.flush()
    return True


async def _user_grid(
    session: AsyncSession,
    link: type[ProjectStar] | type[ProjectWatcher],
    project: Project,
    page: int,
    page_size: int,
) -> UserGridResponse:
    page = max(page, 1)
    total = await _count(
        session,
        select(func.count(link.id))
        .select_from(link)
        .join(User, link.user_id == User.id)
        .where(link.project_id == project.id),
    )
    stmt = (
        select(User)
        .join(link, link.user_id == User.id)
        .where(link.project_id == project.id)
        .order_by(User.name)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    users = (await session.execute(stmt)).scalars().all()
    return UserGridResponse(
        users=[UserSummary(user_id=u.id, user_name=u.name) for u in users],
        page=page,
        page_size=page_size,
        total=total,
    )


async def list_stargazers(
    session: AsyncSession, project: Project, *, page: int = 1, page_size: int = 30
) -> UserGridResponse:
    """Return one page of the users who starred *project*, sorted by name.

    Pages are 1-based; anything below 1 is treated as the first page.
    """
    return await _user_grid(session, ProjectStar, project, page, page_size)


async def list_watchers(
    session: AsyncSession, project: Project, *, page: int = 1, page_size: int = 30
) -> UserGridResponse:
    return await _user_grid(session, ProjectWatcher, project, page, page_size)


# ---------------------------------------------------------------------------
# Discussion
# ---------------------------------------------------------------------------


async def post_discussion_reply(
    session: AsyncSession,
    project: Project,
    *,
    actor: User,
    content: str,
    poster: str | None = None,
) -> str:
    """Queue a reply to the project's forum topic; return the poster's name.

    *poster* defaults to *actor*; naming an organization posts on its behalf.

    Raises:
        NoForumTopic: If the project has no topic yet.
        PermissionDenied: If *actor* may not post as *poster*.
    """
    if project.topic_id is None:
        raise NoForumTopic(f"{project.owner_name}/{project.slug} has no forum topic")

    if poster is None or poster == actor.name:
        poster = actor.name
    else:
        org = await get_organization(session, poster)
        if org is None:
            raise PermissionDenied(Permission.POST_AS_ORGANIZATION, f"Cannot post as '{poster}'")
        perms = await organization_permissions(session, org, actor)
        require(checker(perms), Permission.POST_AS_ORGANIZATION)

    await enqueue(session, JobDescriptor.post_reply(project.topic_id, poster, content))
    logger.info("✅ Queued reply by %s to %s/%s", poster, project.owner_name, project.slug)
    return poster


# ---------------------------------------------------------------------------
# Icons
# ---------------------------------------------------------------------------


async def upload_icon(
    session: AsyncSession,
    project: Project,
    *,
    source: Path,
    filename: str,
    actor_id: str,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> Path:
    """Replace the project's icon with the uploaded file at *source*."""
    require(has_permission, Permission.EDIT_PROJECT_SETTINGS)
    path = await files.replace_icon(project.owner_name, project.slug, source, filename)
    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_icon_changed,
        context_id=project.id,
        new_state=path.name,
        old_state="",
    )
    return path


async def reset_icon(
    session: AsyncSession,
    project: Project,
    *,
    actor_id: str,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> None:
    require(has_permission, Permission.EDIT_PROJECT_SETTINGS)
    await files.reset_icon(project.owner_name, project.slug)
    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_icon_changed,
        context_id=project.id,
        new_state="",
        old_state="custom",
    )
