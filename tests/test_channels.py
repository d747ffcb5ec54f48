"""Tests for ore.services.channels — channel rules and deletion guards."""
from __future__ import annotations

import pytest

from ore.config import DEFAULT_CHANNEL_COLOR, DEFAULT_CHANNEL_NAME
from ore.errors import ChannelError, ChannelNotFound, PermissionDenied
from ore.permissions import Permission, ProjectRole, checker, role_permissions
from ore.services.channels import (
    create_channel,
    delete_channel,
    get_channel,
    is_valid_channel_name,
    list_channels,
    update_channel,
)
from ore.services.versions import count_versions

OWNER = checker(role_permissions(ProjectRole.owner.value))


class TestNames:
    @pytest.mark.parametrize("name", ["Beta", "Snapshots2", "a" * 15])
    def test_valid(self, name):
        assert is_valid_channel_name(name)

    @pytest.mark.parametrize("name", ["", "with space", "dash-ed", "a" * 16, "ünïcode"])
    def test_invalid(self, name):
        assert not is_valid_channel_name(name)


class TestCreate:
    @pytest.mark.anyio
    async def test_default_channel(self, db_session, project):
        listing = await list_channels(db_session, project.id)
        assert [(c.name, c.color) for c in listing.channels] == [(DEFAULT_CHANNEL_NAME, DEFAULT_CHANNEL_COLOR)]
        assert listing.channels[0].color_hex == "#00DC00"

    @pytest.mark.anyio
    async def test_create(self, db_session, project):
        channel = await create_channel(db_session, project, name="Beta", color=1, is_non_reviewed=True, has_permission=OWNER)
        assert channel.is_non_reviewed is True
        assert channel.version_count == 0
        assert (await get_channel(db_session, project.id, "beta")) is not None

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "name, color, key",
        [
            ("bad name", 1, "error.channel.invalidName"),
            ("Beta", 99, "error.channel.invalidColor"),
            ("release", 1, "error.channel.duplicateName"),
            ("Beta", DEFAULT_CHANNEL_COLOR, "error.channel.duplicateColor"),
        ],
    )
    async def test_rejections(self, db_session, project, name, color, key):
        with pytest.raises(ChannelError) as exc_info:
            await create_channel(db_session, project, name=name, color=color, has_permission=OWNER)
        assert exc_info.value.key == key

    @pytest.mark.anyio
    async def test_limit(self, db_session, project):
        for i in range(1, 5):
            await create_channel(db_session, project, name=f"Extra{i}", color=i, has_permission=OWNER)
        with pytest.raises(ChannelError) as exc_info:
            await create_channel(db_session, project, name="OneTooMany", color=12, has_permission=OWNER)
        assert exc_info.value.key == "error.channel.limitReached"

    @pytest.mark.anyio
    async def test_requires_permission(self, db_session, project):
        with pytest.raises(PermissionDenied):
            await create_channel(db_session, project, name="Beta", color=1, has_permission=checker(Permission.NONE))


class TestUpdate:
    @pytest.mark.anyio
    async def test_rename_and_recolor(self, db_session, project):
        updated = await update_channel(db_session, project, "release", new_name="Stable", color=10, has_permission=OWNER)
        assert (updated.name, updated.color) == ("Stable", 10)
        assert await get_channel(db_session, project.id, DEFAULT_CHANNEL_NAME) is None

    @pytest.mark.anyio
    async def test_keep_own_color(self, db_session, project):
        updated = await update_channel(db_session, project, "Release", color=DEFAULT_CHANNEL_COLOR, has_permission=OWNER)
        assert updated.color == DEFAULT_CHANNEL_COLOR

    @pytest.mark.anyio
    async def test_duplicate_name(self, db_session, project):
        await create_channel(db_session, project, name="Beta", color=1, has_permission=OWNER)
        with pytest.raises(ChannelError) as exc_info:
            await update_channel(db_session, project, "Beta", new_name="RELEASE", has_permission=OWNER)
        assert exc_info.value.key == "error.channel.duplicateName"

    @pytest.mark.anyio
    async def test_last_reviewed_channel(self, db_session, project):
        with pytest.raises(ChannelError) as exc_info:
            await update_channel(db_session, project, "Release", is_non_reviewed=True, has_permission=OWNER)
        assert exc_info.value.key == "error.channel.lastReviewed"

    @pytest.mark.anyio
    async def test_unknown(self, db_session, project):
        with pytest.raises(ChannelNotFound):
            await update_channel(db_session, project, "Nope", color=2, has_permission=OWNER)


class TestDelete:
    @pytest.mark.anyio
    async def test_last_channel(self, db_session, project, files):
        with pytest.raises(ChannelError) as exc_info:
            await delete_channel(db_session, project, "Release", actor_id=None, has_permission=OWNER, files=files)
        assert exc_info.value.key == "error.channel.last"

    @pytest.mark.anyio
    async def test_last_non_empty(self, db_session, project, files, upload_version):
        await create_channel(db_session, project, name="Beta", color=1, has_permission=OWNER)
        await upload_version(project, "1.0")
        with pytest.raises(ChannelError) as exc_info:
            await delete_channel(db_session, project, "Release", actor_id=None, has_permission=OWNER, files=files)
        assert exc_info.value.key == "error.channel.lastNonEmpty"

    @pytest.mark.anyio
    async def test_last_reviewed(self, db_session, project, files):
        await create_channel(db_session, project, name="Beta", color=1, is_non_reviewed=True, has_permission=OWNER)
        with pytest.raises(ChannelError) as exc_info:
            await delete_channel(db_session, project, "Release", actor_id=None, has_permission=OWNER, files=files)
        assert exc_info.value.key == "error.channel.lastReviewed"

    @pytest.mark.anyio
    async def test_delete_removes_versions(self, db_session, project, files, upload_version):
        await create_channel(db_session, project, name="Beta", color=1, has_permission=OWNER)
        await upload_version(project, "1.0")
        beta = await upload_version(project, "1.1-beta", channel="Beta")
        beta_dir = files.version_dir(project.owner_name, project.slug, "1.1-beta")
        assert beta_dir.is_dir()

        await delete_channel(db_session, project, "Beta", actor_id=project.owner_id, has_permission=OWNER, files=files)

        assert await get_channel(db_session, project.id, "Beta") is None
        assert await count_versions(db_session, project.id) == 1
        assert not beta_dir.exists()
        assert project.recommended_version_id != beta.version.version_id

    @pytest.mark.anyio
    async def test_delete_recommended_falls_back(self, db_session, project, files, upload_version):
        await create_channel(db_session, project, name="Beta", color=1, has_permission=OWNER)
        first = await upload_version(project, "0.1-beta", channel="Beta")
        kept = await upload_version(project, "1.0")
        assert project.recommended_version_id == first.version.version_id

        await delete_channel(db_session, project, "Beta", actor_id=None, has_permission=OWNER, files=files)
        assert project.recommended_version_id == kept.version.version_id
