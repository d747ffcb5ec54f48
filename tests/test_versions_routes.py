"""
Tests for the version routes (``/api/v1/projects/{owner}/{slug}/versions``).

Covers:
  1. Multipart upload: success, bad jars, duplicates, unknown channel, auth
  2. Listing and lookup by name
  3. Download counting
  4. Deletion and the last-version guard
"""
from __future__ import annotations

from pathlib import Path

import pytest

from ore.config import DEFAULT_CHANNEL_NAME, settings
from ore.db.project_models import Project
from ore.services.jobs import JobType, list_jobs


def _versions(project: Project, suffix: str = "") -> str:
    return f"/api/v1/projects/{project.owner_name}/{project.slug}/versions{suffix}"


def _jar_file(path: Path) -> dict[str, tuple[str, bytes, str]]:
    return {"file": (path.name, path.read_bytes(), "application/java-archive")}


class TestUpload:
    @pytest.mark.anyio
    async def test_upload(self, client, db_session, project, auth_headers, make_jar, files):
        jar = make_jar("example", "1.0", dependencies=[("spongeapi", "7.1.0")])
        resp = await client.post(
            _versions(project),
            files=_jar_file(jar),
            data={"description": "First release", "stability": "beta", "release_type": "major_update"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        version = resp.json()["version"]
        assert version["name"] == "1.0"
        assert version["channelName"] == DEFAULT_CHANNEL_NAME
        assert version["stability"] == "beta"
        assert version["releaseType"] == "major_update"
        assert version["asset"]["filename"] == jar.name
        assert [p["platform"] for p in version["platforms"]] == ["spongeapi"]

        stored = files.version_dir(project.owner_name, project.slug, "1.0") / jar.name
        assert stored.read_bytes() == jar.read_bytes()
        assert not files.tmp_dir.exists() or list(files.tmp_dir.iterdir()) == []
        assert await list_jobs(db_session, job_type=JobType.update_version_post) != []

    @pytest.mark.anyio
    async def test_upload_without_forum_post(self, client, db_session, project, auth_headers, make_jar):
        resp = await client.post(
            _versions(project),
            files=_jar_file(make_jar("example", "1.0")),
            data={"create_forum_post": "false"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        assert await list_jobs(db_session, job_type=JobType.update_version_post) == []

    @pytest.mark.anyio
    async def test_not_a_jar(self, client, project, auth_headers, files):
        resp = await client.post(
            _versions(project),
            files={"file": ("broken.jar", b"definitely not a zip", "application/java-archive")},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert not files.tmp_dir.exists() or list(files.tmp_dir.iterdir()) == []

    @pytest.mark.anyio
    async def test_traversing_version_rejected(self, client, project, auth_headers, make_jar, upload_version, files):
        await upload_version(project, "1.0")
        kept = files.version_dir(project.owner_name, project.slug, "1.0")

        resp = await client.post(
            _versions(project),
            files=_jar_file(make_jar("example", "..", filename="evil.jar")),
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert "may not contain" in resp.json()["detail"]
        assert kept.is_dir()
        assert not (files.plugins_dir / project.owner_name / "evil.jar").exists()

    @pytest.mark.anyio
    async def test_duplicate(self, client, project, auth_headers, make_jar):
        jar = make_jar("example", "1.0")
        first = await client.post(_versions(project), files=_jar_file(jar), headers=auth_headers)
        assert first.status_code == 201
        second = await client.post(_versions(project), files=_jar_file(jar), headers=auth_headers)
        assert second.status_code == 409

    @pytest.mark.anyio
    async def test_unknown_channel(self, client, project, auth_headers, make_jar):
        resp = await client.post(
            _versions(project), files=_jar_file(make_jar()), data={"channel": "Nightly"}, headers=auth_headers
        )
        assert resp.status_code == 404

    @pytest.mark.anyio
    async def test_requires_create_permission(self, client, project, headers_for, other_user, make_jar):
        resp = await client.post(_versions(project), files=_jar_file(make_jar()), headers=headers_for(other_user))
        assert resp.status_code == 403

    @pytest.mark.anyio
    async def test_requires_auth(self, client, project, make_jar):
        resp = await client.post(_versions(project), files=_jar_file(make_jar()))
        assert resp.status_code == 401

    @pytest.mark.anyio
    async def test_too_large(self, client, project, auth_headers, make_jar, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 10)
        resp = await client.post(_versions(project), files=_jar_file(make_jar()), headers=auth_headers)
        assert resp.status_code == 413


class TestRead:
    @pytest.mark.anyio
    async def test_list_and_get(self, client, project, upload_version):
        await upload_version(project, "1.0")
        await upload_version(project, "1.1")

        listing = await client.get(_versions(project))
        assert listing.status_code == 200
        assert listing.json()["total"] == 2

        by_channel = await client.get(_versions(project), params={"channel": "release"})
        assert by_channel.json()["total"] == 2
        assert (await client.get(_versions(project), params={"channel": "nope"})).json()["total"] == 0

        one = await client.get(_versions(project, "/1.1"))
        assert one.status_code == 200
        assert one.json()["name"] == "1.1"
        assert (await client.get(_versions(project, "/9.9"))).status_code == 404

    @pytest.mark.anyio
    async def test_download_counts(self, client, project, upload_version, files):
        result = await upload_version(project, "1.0")
        resp = await client.get(_versions(project, "/1.0/download"))
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/java-archive"
        stored = files.version_dir(project.owner_name, project.slug, "1.0") / result.version.asset.filename
        assert resp.content == stored.read_bytes()

        await client.get(_versions(project, "/1.0/download"))
        assert (await client.get(_versions(project, "/1.0"))).json()["downloads"] == 2

    @pytest.mark.anyio
    async def test_download_missing(self, client, project, upload_version, files):
        await upload_version(project, "1.0")
        assert (await client.get(_versions(project, "/2.0/download"))).status_code == 404
        await files.delete_version_dir(project.owner_name, project.slug, "1.0")
        assert (await client.get(_versions(project, "/1.0/download"))).status_code == 404


class TestDelete:
    @pytest.mark.anyio
    async def test_delete(self, client, project, auth_headers, upload_version):
        await upload_version(project, "1.0")
        await upload_version(project, "1.1")
        assert (await client.delete(_versions(project, "/1.1"), headers=auth_headers)).status_code == 204
        assert (await client.get(_versions(project))).json()["total"] == 1
        assert (await client.delete(_versions(project, "/1.1"), headers=auth_headers)).status_code == 404

    @pytest.mark.anyio
    async def test_last_version_is_kept(self, client, project, auth_headers, upload_version):
        await upload_version(project, "1.0")
        assert (await client.delete(_versions(project, "/1.0"), headers=auth_headers)).status_code == 400

    @pytest.mark.anyio
    async def test_stranger_cannot_delete(self, client, project, headers_for, other_user, upload_version):
        await upload_version(project, "1.0")
        await upload_version(project, "1.1")
        assert (await client.delete(_versions(project, "/1.0"), headers=headers_for(other_user))).status_code == 403
