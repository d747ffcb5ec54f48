"""Channel management — named release tracks within a project.

Rules:
- Names are alphanumeric, at most 15 characters, unique per project
  ignoring case.
- Colors are ``ChannelColor`` ids, unique per project.
- A project has at most ``settings.max_channels`` channels and never fewer
  than one.
- The last channel, the last channel holding versions and the last reviewed
  channel cannot be deleted.

Rejections raise ``ChannelError`` carrying a stable message key.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ore.config import DEFAULT_CHANNEL_COLOR, DEFAULT_CHANNEL_NAME, settings
from ore.db.project_models import Channel, Project, Version
from ore.errors import ChannelError, ChannelNotFound, UnknownColorId
from ore.models.projects import ChannelListResponse, ChannelResponse
from ore.permissions import Permission, PermissionCheck, require
from ore.services.action_log import LoggedActionType, log_action
from ore.services.project_files import ProjectFiles
from ore.services.versions import delete_version_rows
from ore.tags import ChannelColor

logger = logging.getLogger(__name__)

CHANNEL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")
CHANNEL_NAME_MAX_LENGTH = 15


@dataclass
class _ChannelStats:
    channel: Channel
    version_count: int


def is_valid_channel_name(name: str) -> bool:
    return len(name) <= CHANNEL_NAME_MAX_LENGTH and CHANNEL_NAME_PATTERN.match(name) is not None


def _color(color_id: int) -> ChannelColor:
    try:
        return ChannelColor.with_id(color_id)
    except UnknownColorId:
        raise ChannelError("error.channel.invalidColor", f"Unknown channel color {color_id}") from None


def _to_channel_response(channel: Channel, version_count: int) -> ChannelResponse:
    return ChannelResponse(
        channel_id=channel.id,
        name=channel.name,
        color=channel.color,
        color_hex=_color(channel.color).hex,
        is_non_reviewed=channel.is_non_reviewed,
        version_count=version_count,
    )


async def _channel_stats(session: AsyncSession, project_id: str) -> list[_ChannelStats]:
    counts = (
        select(Version.channel_id, func.count(Version.id).label("n"))
        .where(Version.project_id == project_id)
        .group_by(Version.channel_id)
        .subquery()
    )
    stmt = (
        select(Channel, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.channel_id == Channel.id)
        .where(Channel.project_id == project_id)
        .order_by(Channel.created_at.asc(), Channel.name.asc())
    )
    return [_ChannelStats(ch, n) for ch, n in (await session.execute(stmt)).all()]


def _find(stats: list[_ChannelStats], name: str) -> _ChannelStats | None:
    lowered = name.lower()
    return next((s for s in stats if s.channel.name.lower() == lowered), None)


def _check_unique(stats: list[_ChannelStats], *, name: str | None, color: int | None, exclude: Channel | None) -> None:
    others = [s.channel for s in stats if s.channel is not exclude]
    if name is not None and any(c.name.lower() == name.lower() for c in others):
        raise ChannelError("error.channel.duplicateName", f"A channel named '{name}' already exists")
    if color is not None and any(c.color == color for c in others):
        raise ChannelError("error.channel.duplicateColor", "Another channel already uses this color")


def _check_name(name: str) -> None:
    if not is_valid_channel_name(name):
        raise ChannelError(
            "error.channel.invalidName",
            f"Channel names are 1-{CHANNEL_NAME_MAX_LENGTH} letters or digits",
        )


async def list_channels(session: AsyncSession, project_id: str) -> ChannelListResponse:
    """Return the project's channels with their version counts."""
    stats = await _channel_stats(session, project_id)
    return ChannelListResponse(channels=[_to_channel_response(s.channel, s.version_count) for s in stats])


async def get_channel(session: AsyncSession, project_id: str, name: str) -> Channel | None:
    stmt = select(Channel).where(Channel.project_id == project_id, func.lower(Channel.name) == name.lower())
    return (await session.execute(stmt)).scalar_one_or_none()


async def create_default_channel(session: AsyncSession, project_id: str) -> Channel:
    """Add the channel every new project starts with."""
    channel = Channel(
        project_id=project_id,
        name=DEFAULT_CHANNEL_NAME,
        color=DEFAULT_CHANNEL_COLOR,
        is_non_reviewed=False,
    )
    session.add(channel)
    await session.flush()
    return channel


async def create_channel(
    session: AsyncSession,
    project: Project,
    *,
    name: str,
    color: int,
    is_non_reviewed: bool = False,
    has_permission: PermissionCheck,
) -> ChannelResponse:
    """Add a channel to *project*.

    Raises:
        PermissionDenied: Without ``EDIT_CHANNELS``.
        ChannelError: If the name or color is invalid or taken, or the
            project already has the maximum number of channels.
    """
    require(has_permission, Permission.EDIT_CHANNELS)
    _check_name(name)
    _color(color)
    stats = await _channel_stats(session, project.id)
    if len(stats) >= settings.max_channels:
        raise ChannelError(
            "error.channel.limitReached",
            f"A project can have at most {settings.max_channels} channels",
        )
    _check_unique(stats, name=name, color=color, exclude=None)

    channel = Channel(project_id=project.id, name=name, color=color, is_non_reviewed=is_non_reviewed)
    session.add(channel)
    await session.flush()
    logger.info("✅ Created channel %s in %s/%s", name, project.owner_name, project.slug)
    return _to_channel_response(channel, 0)


async def update_channel(
    session: AsyncSession,
    project: Project,
    name: str,
    *,
    new_name: str | None = None,
    color: int | None = None,
    is_non_reviewed: bool | None = None,
    has_permission: PermissionCheck,
) -> ChannelResponse:
    """Rename, recolor or change the review flag of a channel.

    Raises:
        PermissionDenied: Without ``EDIT_CHANNELS``.
        ChannelNotFound: If the project has no channel called *name*.
        ChannelError: If the new name or color is invalid or taken, or the
            change would leave the project without a reviewed channel.
    """
    require(has_permission, Permission.EDIT_CHANNELS)
    stats = await _channel_stats(session, project.id)
    target = _find(stats, name)
    if target is None:
        raise ChannelNotFound(f"Channel '{name}' not found")
    channel = target.channel

    if new_name is not None:
        _check_name(new_name)
    if color is not None:
        _color(color)
    _check_unique(stats, name=new_name, color=color, exclude=channel)

    if is_non_reviewed and not channel.is_non_reviewed:
        reviewed = [s for s in stats if not s.channel.is_non_reviewed]
        if len(reviewed) <= 1:
            raise ChannelError("error.channel.lastReviewed", "A project needs at least one reviewed channel")

    if new_name is not None:
        channel.name = new_name
    if color is not None:
        channel.color = color
    if is_non_reviewed is not None:
        channel.is_non_reviewed = is_non_reviewed
    await session.flush()
    logger.info("✅ Updated channel %s in %s/%s", channel.name, project.owner_name, project.slug)
    return _to_channel_response(channel, target.version_count)


async def delete_channel(
    session: AsyncSession,
    project: Project,
    name: str,
    *,
    actor_id: str | None,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> None:
    """Delete a channel together with its versions and their files.

    Checks, in order: the channel exists; it is not the only channel; it is
    not the only channel with versions; it is not the only reviewed channel.

    Raises:
        PermissionDenied: Without ``EDIT_CHANNELS``.
        ChannelNotFound: If the project has no channel called *name*.
        ChannelError: ``error.channel.last``, ``error.channel.lastNonEmpty``
            or ``error.channel.lastReviewed``.
    """
    require(has_permission, Permission.EDIT_CHANNELS)
    stats = await _channel_stats(session, project.id)
    target = _find(stats, name)
    if target is None:
        raise ChannelNotFound(f"Channel '{name}' not found")
    if len(stats) == 1:
        raise ChannelError("error.channel.last", "A project must have at least one channel")

    non_empty = [s for s in stats if s.version_count > 0]
    if target.version_count > 0 and len(non_empty) == 1:
        raise ChannelError("error.channel.lastNonEmpty", "This is the only channel with versions")

    reviewed = [s for s in stats if not s.channel.is_non_reviewed]
    if not target.channel.is_non_reviewed and len(reviewed) == 1:
        raise ChannelError("error.channel.lastReviewed", "This is the only reviewed channel")

    channel = target.channel
    versions = list(
        (
            await session.execute(
                select(Version)
                .where(Version.channel_id == channel.id)
                .options(selectinload(Version.asset), selectinload(Version.platforms))
            )
        ).scalars().all()
    )
    version_ids = {v.id for v in versions}
    version_names = [v.name for v in versions]
    await delete_version_rows(session, versions)
    await session.delete(channel)
    await session.flush()

    if project.recommended_version_id in version_ids:
        project.recommended_version_id = (
            await session.execute(
                select(Version.id)
                .where(Version.project_id == project.id)
                .order_by(Version.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.channel_deleted,
        context_id=project.id,
        new_state="",
        old_state=channel.name,
    )
    for version_name in version_names:
        await files.delete_version_dir(project.owner_name, project.slug, version_name)
    logger.info(
        "✅ Deleted channel %s (%d versions) from %s/%s",
        channel.name,
        len(version_names),
        project.owner_name,
        project.slug,
    )
