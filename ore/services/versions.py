"""Version/asset persistence — turns a parsed upload into database rows.

This module is the only place that writes ``ore_versions``, ``ore_assets``
and ``ore_version_platforms``.  Route handlers delegate here.

An upload becomes one Asset, one Version and zero or more VersionPlatform
rows.  All three are written inside a single SAVEPOINT together with the
copy of the file into project storage; if any step fails, nothing is kept
and ``TransactionFailure`` is raised.  The caller commits.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ore.db.project_models import Asset, Channel, Project, Version, VersionPlatform
from ore.errors import ChannelNotFound, DuplicateVersion, LastVersion, TransactionFailure
from ore.models.projects import (
    ReleaseType,
    Stability,
    VersionListResponse,
    VersionResponse,
    VersionUploadResponse,
    Visibility,
)
from ore.permissions import Permission, PermissionCheck, require
from ore.services.action_log import LoggedActionType, log_action
from ore.services.jobs import JobDescriptor, enqueue_best_effort
from ore.services.plugin_ingest import PluginFileWithData
from ore.services.project_files import ProjectFiles
from ore.services.responses import to_loaded_version_response, to_version_response

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------


def as_asset(plugin: PluginFileWithData, project_id: str) -> Asset:
    """Build an unsaved Asset for *plugin*'s file."""
    return Asset(
        project_id=project_id,
        filename=plugin.file_name,
        hash=plugin.md5,
        file_size=plugin.file_size,
    )


def as_version(
    plugin: PluginFileWithData,
    *,
    project_id: str,
    description: str | None,
    create_forum_post: bool,
    stability: Stability,
    release_type: ReleaseType | None,
    asset_id: str,
    channel_id: str,
) -> Version:
    """Build an unsaved Version from *plugin*'s first descriptor entry."""
    return Version(
        project_id=project_id,
        channel_id=channel_id,
        name=plugin.version_name,
        slug=plugin.version_slug,
        author_id=plugin.user_id,
        description=description,
        plugin_asset_id=asset_id,
        stability=stability.value,
        release_type=release_type.value if release_type is not None else None,
        uses_mixin=plugin.uses_mixin,
        create_forum_post=create_forum_post,
    )


def as_platforms(plugin: PluginFileWithData, version_id: str) -> list[VersionPlatform]:
    """Build unsaved VersionPlatform rows, one per recognised platform."""
    return [
        VersionPlatform(
            version_id=version_id,
            platform=p.id,
            platform_version=p.version,
            platform_coarse_version=p.coarse_version,
        )
        for p in plugin.versioned_platforms
    ]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def _version_name_taken(session: AsyncSession, project_id: str, name: str) -> bool:
    stmt = select(Version.id).where(Version.project_id == project_id, Version.name == name)
    return (await session.execute(stmt)).first() is not None


async def _asset_hash_taken(session: AsyncSession, project_id: str, md5: str) -> bool:
    stmt = select(Asset.id).where(Asset.project_id == project_id, Asset.hash == md5)
    return (await session.execute(stmt)).first() is not None


async def create_version(
    session: AsyncSession,
    plugin: PluginFileWithData,
    *,
    project: Project,
    channel_id: str,
    files: ProjectFiles,
    description: str | None = None,
    create_forum_post: bool = True,
    stability: Stability = Stability.stable,
    release_type: ReleaseType | None = None,
) -> VersionUploadResponse:
    """Persist *plugin* as a new version of *project*.

    Args:
        session: Active async DB session; the caller commits.
        plugin: Parsed upload.  Its file is copied, not moved.
        project: Target project.
        channel_id: Channel the version is released in; must belong to
            *project*.
        files: Project file layout used to store the plugin file.
        description: Optional Markdown release notes.
        create_forum_post: Announce the release in the project's forum topic.
        stability: Declared stability tag.
        release_type: Declared release type tag.

    Returns:
        ``VersionUploadResponse`` with the new version and the non-fatal
        platform warnings collected while parsing.

    Raises:
        ChannelNotFound: If *channel_id* is not a channel of *project*.
        DuplicateVersion: If the project already has a version with this
            name or an asset with the same content hash.
        TransactionFailure: If writing the rows or the file fails.
    """
    # Hash before any write so a duplicate upload never touches the database.
    md5 = await asyncio.to_thread(lambda: plugin.md5)

    channel = await session.get(Channel, channel_id)
    if channel is None or channel.project_id != project.id:
        raise ChannelNotFound(f"Channel {channel_id} does not belong to project {project.id}")

    version_name = plugin.version_name
    if await _version_name_taken(session, project.id, version_name):
        raise DuplicateVersion(f"Version '{version_name}' already exists")
    if await _asset_hash_taken(session, project.id, md5):
        raise DuplicateVersion("This file has already been uploaded to the project")

    stored: Path | None = None
    try:
        async with session.begin_nested():
            asset = as_asset(plugin, project.id)
            session.add(asset)
            await session.flush()

            version = as_version(
                plugin,
                project_id=project.id,
                description=description,
                create_forum_post=create_forum_post,
                stability=stability,
                release_type=release_type,
                asset_id=asset.id,
                channel_id=channel.id,
            )
            session.add(version)
            await session.flush()

            platforms = as_platforms(plugin, version.id)
            session.add_all(platforms)
            await session.flush()

            stored = await files.store_version_file(plugin.path, project.owner_name, project.slug, version.name)
    except IntegrityError as exc:
        await _discard_stored(files, project, version_name, stored)
        logger.warning("⚠️ Concurrent duplicate upload of %s to %s: %s", version_name, project.id, exc)
        raise DuplicateVersion(f"Version '{version_name}' already exists") from exc
    except (SQLAlchemyError, OSError) as exc:
        # The name was free when checked, so a half-written directory is ours.
        await files.delete_version_dir(project.owner_name, project.slug, version_name)
        logger.error("❌ Failed to create version %s of %s/%s: %s", version_name, project.owner_name, project.slug, exc)
        raise TransactionFailure(f"Could not create version '{version_name}'") from exc

    if project.recommended_version_id is None:
        project.recommended_version_id = version.id

    await log_action(
        session,
        user_id=plugin.user_id,
        action=LoggedActionType.version_uploaded,
        context_id=project.id,
        new_state=version.name,
        old_state="",
    )

    if create_forum_post and Visibility(project.visibility).is_public:
        await enqueue_best_effort(session, JobDescriptor.update_version_post(version.id))

    await session.flush()
    logger.info("✅ Created version %s of %s/%s", version.name, project.owner_name, project.slug)
    return VersionUploadResponse(
        version=to_version_response(version, asset=asset, platforms=platforms, channel_name=channel.name),
        warnings=plugin.warnings,
    )


async def _discard_stored(files: ProjectFiles, project: Project, version_name: str, stored: Path | None) -> None:
    if stored is not None:
        await files.delete_version_dir(project.owner_name, project.slug, version_name)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


def _loaded_versions():
    return select(Version).options(
        selectinload(Version.asset),
        selectinload(Version.platforms),
        selectinload(Version.channel),
    )


async def _get_version_row(session: AsyncSession, project_id: str, version: str) -> Version | None:
    """Look a version up by name, falling back to slug."""
    stmt = (
        _loaded_versions()
        .where(Version.project_id == project_id, or_(Version.name == version, Version.slug == version))
        .order_by((Version.name == version).desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_version(session: AsyncSession, project_id: str, version: str) -> VersionResponse | None:
    """Return the version named *version* (or with that slug), or ``None``."""
    row = await _get_version_row(session, project_id, version)
    return to_loaded_version_response(row) if row is not None else None


async def get_version_by_id(session: AsyncSession, version_id: str) -> VersionResponse | None:
    row = (await session.execute(_loaded_versions().where(Version.id == version_id))).scalars().first()
    return to_loaded_version_response(row) if row is not None else None


async def list_versions(
    session: AsyncSession,
    project_id: str,
    *,
    channel: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> VersionListResponse:
    """Return a page of a project's versions, newest first.

    *channel* filters by channel name (case-insensitive).
    """
    stmt = _loaded_versions().where(Version.project_id == project_id)
    count_stmt = select(func.count(Version.id)).where(Version.project_id == project_id)
    if channel is not None:
        stmt = stmt.join(Channel, Channel.id == Version.channel_id).where(
            func.lower(Channel.name) == channel.lower()
        )
        count_stmt = count_stmt.join(Channel, Channel.id == Version.channel_id).where(
            func.lower(Channel.name) == channel.lower()
        )
    stmt = stmt.order_by(Version.created_at.desc()).limit(limit).offset(offset)

    rows = (await session.execute(stmt)).scalars().all()
    total = (await session.execute(count_stmt)).scalar_one()
    return VersionListResponse(versions=[to_loaded_version_response(r) for r in rows], total=total)


async def count_versions(session: AsyncSession, project_id: str) -> int:
    stmt = select(func.count(Version.id)).where(Version.project_id == project_id)
    return (await session.execute(stmt)).scalar_one()


# ---------------------------------------------------------------------------
# Downloads
# ---------------------------------------------------------------------------


async def record_download(
    session: AsyncSession,
    project: Project,
    version: str,
    *,
    files: ProjectFiles,
) -> tuple[VersionResponse, Path] | None:
    """Count a download and return the version with the path to its file.

    Returns ``None`` when the version does not exist.
    """
    row = await _get_version_row(session, project.id, version)
    if row is None:
        return None
    await session.execute(
        update(Version).where(Version.id == row.id).values(downloads=Version.downloads + 1)
    )
    await session.execute(
        update(Project).where(Project.id == project.id).values(downloads=Project.downloads + 1)
    )
    await session.refresh(row, attribute_names=["downloads"])
    path = files.version_dir(project.owner_name, project.slug, row.name) / row.asset.filename
    return to_loaded_version_response(row), path


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


async def delete_version(
    session: AsyncSession,
    project: Project,
    version: str,
    *,
    actor_id: str | None,
    has_permission: PermissionCheck,
    files: ProjectFiles,
) -> bool:
    """Delete a version, its platforms, its asset and its file.

    Returns False when the version does not exist.

    Raises:
        PermissionDenied: Without ``DELETE_VERSION``.
        LastVersion: If it is the project's only version.
    """
    require(has_permission, Permission.DELETE_VERSION)
    row = await _get_version_row(session, project.id, version)
    if row is None:
        return False
    if await count_versions(session, project.id) <= 1:
        raise LastVersion("Every project must keep at least one version")

    name, asset = row.name, row.asset
    await delete_version_rows(session, [row])

    if project.recommended_version_id == row.id:
        newest = (
            await session.execute(
                select(Version.id)
                .where(Version.project_id == project.id)
                .order_by(Version.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        project.recommended_version_id = newest

    await log_action(
        session,
        user_id=actor_id,
        action=LoggedActionType.version_deleted,
        context_id=project.id,
        new_state="",
        old_state=name,
    )
    await files.delete_version_dir(project.owner_name, project.slug, name)
    logger.info("✅ Deleted version %s (%s) of %s/%s", name, asset.hash, project.owner_name, project.slug)
    return True


async def delete_version_rows(session: AsyncSession, rows: list[Version]) -> None:
    """Delete versions and then their assets; platforms cascade."""
    assets = [r.asset for r in rows]
    for row in rows:
        await session.delete(row)
    await session.flush()
    for asset in assets:
        await session.delete(asset)
    await session.flush()
