"""Moderation — user flags against projects and moderator notes."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ore.db.models import User
from ore.db.project_models import Flag, Note, Project
from ore.errors import FlagAlreadyExists
from ore.models.projects import (
    FlagListResponse,
    FlagReason,
    FlagResponse,
    NoteListResponse,
    NoteResponse,
)
from ore.permissions import Permission, PermissionCheck, require
from ore.services.action_log import LoggedActionType, log_action

logger = logging.getLogger(__name__)

_Reporter = aliased(User)
_Resolver = aliased(User)


def _to_flag_response(flag: Flag, user_name: str | None, resolver_name: str | None) -> FlagResponse:
    return FlagResponse(
        flag_id=flag.id,
        project_id=flag.project_id,
        user_id=flag.user_id,
        user_name=user_name or "",
        reason=flag.reason,
        comment=flag.comment,
        is_resolved=flag.is_resolved,
        resolved_at=flag.resolved_at,
        resolved_by=flag.resolved_by,
        resolved_by_name=resolver_name,
        created_at=flag.created_at,
    )


async def _flag_with_names(session: AsyncSession, flag_id: str) -> FlagResponse | None:
    stmt = (
        select(Flag, _Reporter.name, _Resolver.name)
        .outerjoin(_Reporter, _Reporter.id == Flag.user_id)
        .outerjoin(_Resolver, _Resolver.id == Flag.resolved_by)
        .where(Flag.id == flag_id)
    )
    row = (await session.execute(stmt)).first()
    return _to_flag_response(*row) if row is not None else None


async def flag_project(
    session: AsyncSession,
    project: Project,
    *,
    user_id: str,
    reason: FlagReason,
    comment: str = "",
) -> FlagResponse:
    """Raise a flag on *project*.

    Raises:
        FlagAlreadyExists: If *user_id* already has an unresolved flag on it.
    """
    existing = await session.execute(
        select(Flag.id).where(
            Flag.project_id == project.id,
            Flag.user_id == user_id,
            Flag.is_resolved.is_(False),
        )
    )
    if existing.first() is not None:
        raise FlagAlreadyExists(f"You already have an open flag on {project.owner_name}/{project.slug}")

    flag = Flag(project_id=project.id, user_id=user_id, reason=reason.value, comment=comment)
    session.add(flag)
    await session.flush()
    await log_action(
        session,
        user_id=user_id,
        action=LoggedActionType.project_flagged,
        context_id=project.id,
        new_state=f"Flagged by {user_id}: {reason.value}",
        old_state="",
    )
    logger.info("✅ %s flagged %s/%s (%s)", user_id, project.owner_name, project.slug, reason.value)
    reporter = await session.get(User, user_id)
    return _to_flag_response(flag, reporter.name if reporter is not None else None, None)


async def set_flag_resolved(
    session: AsyncSession,
    flag_id: str,
    *,
    resolved: bool,
    actor_id: str,
    has_permission: PermissionCheck,
) -> FlagResponse | None:
    """Mark a flag resolved (or reopen it).  Returns ``None`` for an unknown flag.

    Raises:
        PermissionDenied: Without ``MOD_NOTES_AND_FLAGS``.
    """
    require(has_permission, Permission.MOD_NOTES_AND_FLAGS)
    flag = await session.get(Flag, flag_id)
    if flag is None:
        return None

    flag.is_resolved = resolved
    flag.resolved_at = datetime.now(tz=timezone.utc) if resolved else None
    flag.resolved_by = actor_id if resolved else None
    await session.flush()
    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.project_flag_resolved,
        context_id=flag.project_id,
        new_state="resolved" if resolved else "unresolved",
        old_state="unresolved" if resolved else "resolved",
    )
    return await _flag_with_names(session, flag.id)


async def list_flags(
    session: AsyncSession,
    *,
    project_id: str | None = None,
    include_resolved: bool = False,
) -> FlagListResponse:
    """Return flags, newest first, for one project or site-wide."""
    stmt = (
        select(Flag, _Reporter.name, _Resolver.name)
        .outerjoin(_Reporter, _Reporter.id == Flag.user_id)
        .outerjoin(_Resolver, _Resolver.id == Flag.resolved_by)
        .order_by(Flag.created_at.desc())
    )
    if project_id is not None:
        stmt = stmt.where(Flag.project_id == project_id)
    if not include_resolved:
        stmt = stmt.where(Flag.is_resolved.is_(False))
    rows = (await session.execute(stmt)).all()
    return FlagListResponse(flags=[_to_flag_response(*row) for row in rows])


async def add_note(
    session: AsyncSession,
    project: Project,
    *,
    user_id: str,
    message: str,
    has_permission: PermissionCheck,
) -> NoteResponse:
    """Attach a moderator note to *project*."""
    require(has_permission, Permission.MOD_NOTES_AND_FLAGS)
    note = Note(project_id=project.id, user_id=user_id, message=message)
    session.add(note)
    await session.flush()
    await log_action(
        session,
        user_id=user_id,
        action=LoggedActionType.project_note_added,
        context_id=project.id,
        new_state=message,
        old_state="",
    )
    user_name = (await session.execute(select(User.name).where(User.id == user_id))).scalar_one_or_none()
    return NoteResponse(
        note_id=note.id,
        user_id=note.user_id,
        user_name=user_name,
        message=note.message,
        created_at=note.created_at,
    )


async def list_notes(
    session: AsyncSession,
    project: Project,
    *,
    has_permission: PermissionCheck,
) -> NoteListResponse:
    require(has_permission, Permission.MOD_NOTES_AND_FLAGS)
    stmt = (
        select(Note, User.name)
        .outerjoin(User, User.id == Note.user_id)
        .where(Note.project_id == project.id)
        .order_by(Note.created_at.asc())
    )
    rows = (await session.execute(stmt)).all()
    return NoteListResponse(
        notes=[
            NoteResponse(
                note_id=note.id,
                user_id=note.user_id,
                user_name=name,
                message=note.message,
                created_at=note.created_at,
            )
            for note, name in rows
        ]
    )
