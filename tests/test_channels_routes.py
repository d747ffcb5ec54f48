"""Tests for the channel routes."""
from __future__ import annotations

import pytest

from ore.config import DEFAULT_CHANNEL_NAME
from ore.db.project_models import Project


def _channels(project: Project, suffix: str = "") -> str:
    return f"/api/v1/projects/{project.owner_name}/{project.slug}/channels{suffix}"


class TestChannelRoutes:
    @pytest.mark.anyio
    async def test_list(self, client, project):
        resp = await client.get(_channels(project))
        assert resp.status_code == 200
        assert [c["name"] for c in resp.json()["channels"]] == [DEFAULT_CHANNEL_NAME]

    @pytest.mark.anyio
    async def test_create_update_delete(self, client, project, auth_headers):
        created = await client.post(
            _channels(project), json={"name": "Beta", "color": 3, "isNonReviewed": True}, headers=auth_headers
        )
        assert created.status_code == 201
        assert created.json()["isNonReviewed"] is True

        updated = await client.put(_channels(project, "/Beta"), json={"name": "Snapshot"}, headers=auth_headers)
        assert updated.status_code == 200
        assert updated.json()["name"] == "Snapshot"

        deleted = await client.delete(_channels(project, "/Snapshot"), headers=auth_headers)
        assert deleted.status_code == 204
        names = [c["name"] for c in (await client.get(_channels(project))).json()["channels"]]
        assert names == [DEFAULT_CHANNEL_NAME]

    @pytest.mark.anyio
    async def test_rejection_carries_message_key(self, client, project, auth_headers):
        resp = await client.post(_channels(project), json={"name": "bad name", "color": 3}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"]["key"] == "error.channel.invalidName"

    @pytest.mark.anyio
    async def test_last_channel_cannot_be_deleted(self, client, project, auth_headers):
        resp = await client.delete(_channels(project, f"/{DEFAULT_CHANNEL_NAME}"), headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"]["key"] == "error.channel.last"

    @pytest.mark.anyio
    async def test_unknown_channel(self, client, project, auth_headers):
        resp = await client.put(_channels(project, "/Nope"), json={"color": 4}, headers=auth_headers)
        assert resp.status_code == 404

    @pytest.mark.anyio
    async def test_permissions(self, client, project, headers_for, other_user):
        assert (await client.post(_channels(project), json={"name": "Beta", "color": 3})).status_code == 401
        resp = await client.post(
            _channels(project), json={"name": "Beta", "color": 3}, headers=headers_for(other_user)
        )
        assert resp.status_code == 403
