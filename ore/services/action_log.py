"""User action log — append-only record of who changed what.

Entries are added to the caller's session and committed with the caller's
transaction, so an action is logged if and only if it happened.
"""
from __future__ import annotations

import enum
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ore.db.models import LoggedAction

logger = logging.getLogger(__name__)


class LoggedActionType(str, enum.Enum):
    project_visibility_change = "project_visibility_change"
    project_flagged = "project_flagged"
    project_flag_resolved = "project_flag_resolved"
    project_icon_changed = "project_icon_changed"
    project_member_removed = "project_member_removed"
    project_note_added = "project_note_added"
    version_uploaded = "version_uploaded"
    version_deleted = "version_deleted"
    channel_deleted = "channel_deleted"
    project_page_edited = "project_page_edited"
    project_page_deleted = "project_page_deleted"


async def log_action(
    session: AsyncSession,
    *,
    user_id: str | None,
    action: LoggedActionType,
    context_id: str | None,
    new_state: str,
    old_state: str,
    address: str = "",
) -> LoggedAction:
    """Add a log entry to *session*; the caller commits."""
    entry = LoggedAction(
        user_id=user_id,
        address=address,
        action=action.value,
        context_id=context_id,
        new_state=new_state,
        old_state=old_state,
    )
    session.add(entry)
    await session.flush()
    logger.debug("Logged %s on %s by %s", action.value, context_id, user_id)
    return entry


async def list_actions(
    session: AsyncSession,
    context_id: str,
    *,
    limit: int = 100,
) -> list[LoggedAction]:
    """Return log entries for *context_id*, newest first."""
    stmt = (
        select(LoggedAction)
        .where(LoggedAction.context_id == context_id)
        .order_by(LoggedAction.created_at.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())
