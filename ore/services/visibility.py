"""Project visibility state machine.

States and the transitions between them::

    New ──────────► Public ◄────────┐
     │               │  ▲           │
     │               ▼  │           │
     │          NeedsChanges ──► NeedsApproval
     │
     └──► (hard delete)

    any state ──► SoftDelete (terminal)

Re-applying the current state is accepted and recorded like any other
transition.  Every transition writes exactly one ``ProjectVisibilityChange``
row plus a ``LoggedAction``.  When the project's publicness flips (or it is
soft-deleted) a forum topic sync job is queued in a SAVEPOINT so that a
failed enqueue never aborts the transition itself.

The caller commits.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ore.db.models import User
from ore.db.project_models import Project, ProjectVisibilityChange, Version
from ore.errors import InvalidTransition, MissingComment, ProjectNotFound
from ore.models.projects import (
    VisibilityChangeResponse,
    VisibilityTransitionResponse,
    Visibility,
)
from ore.permissions import Permission, PermissionCheck, require
from ore.services.action_log import LoggedActionType, log_action
from ore.services.jobs import JobDescriptor, enqueue_best_effort
from ore.services.project_files import ProjectFiles
from ore.services.responses import to_change_response, to_project_response
from ore.services.versions import delete_version_rows

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[Visibility, frozenset[Visibility]] = {
    Visibility.New: frozenset({Visibility.New, Visibility.Public, Visibility.SoftDelete}),
    Visibility.Public: frozenset({Visibility.Public, Visibility.NeedsChanges, Visibility.SoftDelete}),
    Visibility.NeedsChanges: frozenset(
        {Visibility.NeedsChanges, Visibility.Public, Visibility.NeedsApproval, Visibility.SoftDelete}
    ),
    Visibility.NeedsApproval: frozenset(
        {Visibility.NeedsApproval, Visibility.Public, Visibility.SoftDelete}
    ),
    Visibility.SoftDelete: frozenset({Visibility.SoftDelete}),
}


def can_transition(old: Visibility, new: Visibility) -> bool:
    return new in _TRANSITIONS[old]


def required_permission(old: Visibility, new: Visibility) -> Permission:
    """Permission an actor needs to move a project from *old* to *new*."""
    if new is Visibility.SoftDelete:
        return Permission.DELETE_PROJECT
    if new is Visibility.NeedsApproval:
        return Permission.EDIT_PROJECT_SETTINGS
    if new is Visibility.New:
        return Permission.EDIT_PROJECT_SETTINGS
    return Permission.REVIEWER


def _parse_visibility(value: int) -> Visibility:
    try:
        return Visibility(value)
    except ValueError:
        raise InvalidTransition(f"Unknown visibility {value}") from None


async def _get_project(session: AsyncSession, project_id: str) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise ProjectNotFound(f"Project {project_id} not found")
    return project


async def _user_name(session: AsyncSession, user_id: str | None) -> str | None:
    if user_id is None:
        return None
    return (await session.execute(select(User.name).where(User.id == user_id))).scalar_one_or_none()


async def set_visibility(
    session: AsyncSession,
    project_id: str,
    new_state: Visibility | int,
    *,
    comment: str,
    actor_id: str | None,
    has_permission: PermissionCheck,
) -> VisibilityTransitionResponse:
    """Move a project to *new_state* and record the transition.

    Args:
        session: Active async DB session; the caller commits.
        project_id: Project to transition.
        new_state: Target visibility.
        comment: Moderator comment; required when moving to NeedsChanges.
        actor_id: User performing the transition (None for the system).
        has_permission: Permission predicate for the actor on this project.

    Returns:
        The updated project and the audit record that was written.

    Raises:
        ProjectNotFound: If the project does not exist.
        InvalidTransition: If the transition is not allowed.
        PermissionDenied: If the actor lacks the required permission.
        MissingComment: If NeedsChanges is requested without a comment.
    """
    project = await _get_project(session, project_id)
    old = _parse_visibility(project.visibility)
    new = _parse_visibility(int(new_state))

    if not can_transition(old, new):
        raise InvalidTransition(f"Cannot change visibility from {old.name} to {new.name}")
    require(has_permission, required_permission(old, new))
    if new is Visibility.NeedsChanges and not comment.strip():
        raise MissingComment("A comment is required when requesting changes")

    change = ProjectVisibilityChange(
        project_id=project.id,
        created_by=actor_id,
        old_visibility=old.value,
        new_visibility=new.value,
        comment=comment,
    )
    session.add(change)
    project.visibility = new.value
    await session.flush()

    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_visibility_change,
        context_id=project.id,
        new_state=new.name,
        old_state=old.name,
    )

    if old.is_public != new.is_public or new is Visibility.SoftDelete:
        await enqueue_best_effort(session, JobDescriptor.update_project_topic(project.id))

    logger.info(
        "✅ %s/%s visibility %s → %s by %s",
        project.owner_name,
        project.slug,
        old.name,
        new.name,
        actor_id,
    )
    return VisibilityTransitionResponse(
        project=to_project_response(project),
        change=to_change_response(change, await _user_name(session, actor_id)),
    )


async def send_for_approval(
    session: AsyncSession,
    project_id: str,
    *,
    actor_id: str,
    has_permission: PermissionCheck,
) -> VisibilityTransitionResponse | None:
    """Owner resubmits a project after making requested changes.

    Only a NeedsChanges project moves (to NeedsApproval); in any other state
    this is a no-op and returns ``None``.
    """
    project = await _get_project(session, project_id)
    if project.visibility != Visibility.NeedsChanges.value:
        logger.info("send_for_approval on %s ignored (visibility %s)", project_id, project.visibility)
        return None
    return await set_visibility(
        session,
        project_id,
        Visibility.NeedsApproval,
        comment="",
        actor_id=actor_id,
        has_permission=has_permission,
    )


async def soft_delete_project(
    session: AsyncSession,
    project_id: str,
    *,
    comment: str,
    actor_id: str,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> VisibilityTransitionResponse | None:
    """Delete a project the way its owner would.

    A project that was never approved (New) is removed outright and ``None``
    is returned; any other project moves to SoftDelete.
    """
    project = await _get_project(session, project_id)
    if project.visibility == Visibility.New.value:
        require(has_permission, Permission.DELETE_PROJECT)
        await remove_project(session, project, actor_id=actor_id, files=files)
        return None
    return await set_visibility(
        session,
        project_id,
        Visibility.SoftDelete,
        comment=comment,
        actor_id=actor_id,
        has_permission=has_permission,
    )


async def hard_delete_project(
    session: AsyncSession,
    project_id: str,
    *,
    actor_id: str | None,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> None:
    """Permanently delete a project with all its rows and files.

    Raises:
        PermissionDenied: Without ``HARD_DELETE_PROJECT``, except for a New
            project, which ``DELETE_PROJECT`` suffices for.
    """
    project = await _get_project(session, project_id)
    is_new = project.visibility == Visibility.New.value
    if not (is_new and has_permission(Permission.DELETE_PROJECT)):
        require(has_permission, Permission.HARD_DELETE_PROJECT)
    await remove_project(session, project, actor_id=actor_id, files=files)


async def remove_project(
    session: AsyncSession,
    project: Project,
    *,
    actor_id: str | None,
    files: ProjectFiles,
) -> None:
    """Delete *project* with its versions, files and forum topic."""
    project_id, owner, slug, topic_id = project.id, project.owner_name, project.slug, project.topic_id
    old = _parse_visibility(project.visibility)

    # Versions reference assets and channels, so they go first.

    versions = (
        await session.execute(
            select(Version)
            .where(Version.project_id == project_id)
            .options(selectinload(Version.asset), selectinload(Version.platforms))
        )
    ).scalars().all()
    await delete_version_rows(session, list(versions))

    await session.delete(project)
    await session.flush()

    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_visibility_change,
        context_id=project_id,
        new_state="deleted",
        old_state=old.name,
    )
    if topic_id is not None:
        await enqueue_best_effort(session, JobDescriptor.delete_topic(topic_id))

    await files.delete_project(owner, slug)
    logger.info("✅ Hard-deleted project %s/%s", owner, slug)


async def get_last_visibility_change(
    session: AsyncSession, project_id: str
) -> VisibilityChangeResponse | None:
    """Return the newest audit record for the project, with its actor's name."""
    stmt = (
        select(ProjectVisibilityChange, User.name)
        .outerjoin(User, User.id == ProjectVisibilityChange.created_by)
        .where(ProjectVisibilityChange.project_id == project_id)
        .order_by(ProjectVisibilityChange.created_at.desc())
        .limit(1)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    change, name = row
    return to_change_response(change, name)


async def list_visibility_changes(
    session: AsyncSession, project_id: str
) -> list[VisibilityChangeResponse]:
    """Return the project's full visibility history, oldest first."""
    stmt = (
        select(ProjectVisibilityChange, User.name)
        .outerjoin(User, User.id == ProjectVisibilityChange.created_by)
        .where(ProjectVisibilityChange.project_id == project_id)
        .order_by(ProjectVisibilityChange.created_at.asc())
    )
    return [to_change_response(change, name) for change, name in (await session.execute(stmt)).all()]
