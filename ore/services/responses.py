"""ORM row → wire DTO conversion shared by the service modules.

Converters never trigger lazy loads: anything beyond the row's own columns is
passed in explicitly by the caller, which has already loaded it.
"""
from __future__ import annotations

from ore.db.project_models import Asset, Project, ProjectVisibilityChange, Version, VersionPlatform
from ore.models.projects import (
    AssetResponse,
    PlatformResponse,
    ProjectResponse,
    TagResponse,
    VersionResponse,
    Visibility,
    VisibilityChangeResponse,
)
from ore.tags import version_tags


def to_project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        project_id=project.id,
        owner_id=project.owner_id,
        owner_name=project.owner_name,
        name=project.name,
        slug=project.slug,
        category=project.category,
        description=project.description,
        visibility=project.visibility,
        visibility_name=Visibility(project.visibility).name_key,
        recommended_version_id=project.recommended_version_id,
        topic_id=project.topic_id,
        downloads=project.downloads,
        created_at=project.created_at,
    )


def to_asset_response(asset: Asset) -> AssetResponse:
    return AssetResponse(
        asset_id=asset.id,
        filename=asset.filename,
        hash=asset.hash,
        file_size=asset.file_size,
    )


def to_version_response(
    version: Version,
    *,
    asset: Asset,
    platforms: list[VersionPlatform],
    channel_name: str,
) -> VersionResponse:
    """Assemble a ``VersionResponse`` including display tags."""
    tags = version_tags(
        [(p.platform, p.platform_coarse_version or p.platform_version) for p in platforms],
        uses_mixin=version.uses_mixin,
        stability=version.stability,
    )
    return VersionResponse(
        version_id=version.id,
        project_id=version.project_id,
        channel_id=version.channel_id,
        channel_name=channel_name,
        name=version.name,
        slug=version.slug,
        author_id=version.author_id,
        description=version.description,
        stability=version.stability,
        release_type=version.release_type,
        uses_mixin=version.uses_mixin,
        downloads=version.downloads,
        asset=to_asset_response(asset),
        platforms=[
            PlatformResponse(
                platform=p.platform,
                platform_version=p.platform_version,
                platform_coarse_version=p.platform_coarse_version,
            )
            for p in platforms
        ],
        tags=[
            TagResponse(
                name=t.name,
                data=t.data,
                background=t.color.background,
                foreground=t.color.foreground,
            )
            for t in tags
        ],
        created_at=version.created_at,
    )


def to_loaded_version_response(version: Version) -> VersionResponse:
    """Convert a version whose asset, platforms and channel are eagerly loaded."""
    return to_version_response(
        version,
        asset=version.asset,
        platforms=list(version.platforms),
        channel_name=version.channel.name,
    )


def to_change_response(
    change: ProjectVisibilityChange, created_by_name: str | None = None
) -> VisibilityChangeResponse:
    return VisibilityChangeResponse(
        change_id=change.id,
        project_id=change.project_id,
        created_by=change.created_by,
        created_by_name=created_by_name,
        old_visibility=change.old_visibility,
        new_visibility=change.new_visibility,
        comment=change.comment,
        created_at=change.created_at,
    )
