"""Bulk dummy data for development databases.

``reset`` wipes every project, user and uploaded file.  ``seed`` resets and
then creates ``users`` users, each owning one project with ``channels`` extra
channels and ``versions`` versions per channel.  Seeding never queues forum
jobs.

Each version is a freshly written jar whose ``mcmod.info`` carries the
generated plugin id and version, so every file hashes differently.  When a
template jar is given, its other entries are copied into every generated jar.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ore.config import DEFAULT_CHANNEL_COLOR, DEFAULT_CHANNEL_NAME, settings
from ore.db.models import Organization, OrganizationUserRole, User
from ore.db.project_models import (
    Flag,
    Note,
    Project,
    ProjectStar,
    ProjectUserRole,
    ProjectVisibilityChange,
    ProjectWatcher,
)
from ore.errors import ChannelNotFound
from ore.permissions import ProjectRole, checker, role_permissions
from ore.services import channels as channel_service
from ore.services.plugin_ingest import MANIFEST, MCMOD_DESCRIPTOR, SPONGE_DESCRIPTOR, load_plugin_file
from ore.services.project_files import ProjectFiles
from ore.services.projects import create_project, get_project
from ore.services.versions import create_version
from ore.services.visibility import remove_project
from ore.tags import ChannelColor

logger = logging.getLogger(__name__)

_DESCRIPTORS = {SPONGE_DESCRIPTOR, MCMOD_DESCRIPTOR}


@dataclass
class SeedSummary:
    users: int = 0
    projects: int = 0
    channels: int = 0
    versions: int = 0


def build_plugin_jar(target: Path, plugin_id: str, name: str, version: str, template: Path | None = None) -> Path:
    """Write a plugin jar at *target* declaring one plugin."""
    target.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as out:
        if template is not None:
            with zipfile.ZipFile(template) as src:
                for info in src.infolist():
                    if info.filename in _DESCRIPTORS:
                        continue
                    out.writestr(info, src.read(info.filename))
        else:
            out.writestr(MANIFEST, "Manifest-Version: 1.0\n")
        out.writestr(
            MCMOD_DESCRIPTOR,
            json.dumps([{"modid": plugin_id, "name": name, "version": version, "requiredMods": []}]),
        )
    return target


async def reset(session: AsyncSession, files: ProjectFiles) -> None:
    """Delete every project, user and uploaded file."""
    projects = (await session.execute(select(Project))).scalars().all()
    for project in projects:
        await remove_project(session, project, actor_id=None, files=files)

    for model in (
        ProjectStar,
        ProjectWatcher,
        Flag,
        Note,
        ProjectVisibilityChange,
        ProjectUserRole,
        OrganizationUserRole,
        Organization,
        User,
    ):
        await session.execute(delete(model))
    await session.flush()

    await asyncio.to_thread(shutil.rmtree, files.root, True)
    logger.info("✅ Reset: removed %d projects, all users and %s", len(projects), files.root)


def _seed_colors(count: int) -> list[int]:
    colors = [c.id for c in ChannelColor if c.id != DEFAULT_CHANNEL_COLOR and c is not ChannelColor.Transparent]
    return colors[:count]


async def _upload(
    session: AsyncSession,
    files: ProjectFiles,
    project: Project,
    user: User,
    *,
    channel_id: str,
    plugin_id: str,
    name: str,
    version: str,
    template: Path | None,
) -> None:
    staged = files.tmp_dir / str(uuid.uuid4()) / f"{plugin_id}-{version}.jar"
    await asyncio.to_thread(build_plugin_jar, staged, plugin_id, name, version, template)
    try:
        plugin = await asyncio.to_thread(load_plugin_file, staged, user.id)
        await create_version(
            session,
            plugin,
            project=project,
            channel_id=channel_id,
            files=files,
            create_forum_post=False,
        )
    finally:
        await files.delete_upload(staged)


async def seed(
    session: AsyncSession,
    files: ProjectFiles,
    *,
    users: int,
    versions: int,
    channels: int,
    template: Path | None = None,
) -> SeedSummary:
    """Reset the database, then fill it with dummy users, projects and versions."""
    await reset(session, files)

    max_extra = settings.max_channels - 1
    if channels > max_extra:
        logger.warning("⚠️ Capping seeded channels at %d per project", max_extra)
        channels = max_extra

    owner_perms = checker(role_permissions(ProjectRole.owner.value))
    summary = SeedSummary()
    for i in range(users):
        logger.info("User %d/%d", i + 1, users)
        user = User(name=f"User-{i}")
        session.add(user)
        await session.flush()
        summary.users += 1

        plugin_id = f"pluginId.{i}"
        plugin_name = f"Plugin{i}"
        created = await create_project(session, actor=user, name=plugin_name, create_forum_topic=False)
        project = await get_project(session, created.owner_name, created.slug)
        summary.projects += 1

        default_channel = await channel_service.get_channel(session, project.id, DEFAULT_CHANNEL_NAME)
        if default_channel is None:
            raise ChannelNotFound(f"{project.owner_name}/{project.slug} has no {DEFAULT_CHANNEL_NAME} channel")
        await _upload(
            session, files, project, user,
            channel_id=default_channel.id, plugin_id=plugin_id, name=plugin_name, version="1.0", template=template,
        )
        summary.versions += 1

        channel_ids: list[str] = []
        for c, color in enumerate(_seed_colors(channels)):
            channel = await channel_service.create_channel(
                session, project, name=f"Channel{c + 1}", color=color, has_permission=owner_perms
            )
            channel_ids.append(channel.channel_id)
            summary.channels += 1

        for v in range(versions):
            for j, channel_id in enumerate(channel_ids):
                await _upload(
                    session, files, project, user,
                    channel_id=channel_id, plugin_id=plugin_id, name=plugin_name,
                    version=f"{v}.{j}.0", template=template,
                )
                summary.versions += 1

    logger.info(
        "✅ Seeded %d users, %d projects, %d channels, %d versions",
        summary.users, summary.projects, summary.channels, summary.versions,
    )
    return summary
