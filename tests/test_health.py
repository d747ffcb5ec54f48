"""Tests for the health and root endpoints."""
from __future__ import annotations

import pytest

from ore.config import settings


class TestHealth:
    @pytest.mark.anyio
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "Ore", "version": settings.app_version}

    @pytest.mark.anyio
    async def test_full_health(self, client, monkeypatch):
        monkeypatch.setattr(settings, "forums_enabled", False)
        resp = await client.get("/api/v1/health/full")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"database": "ok", "forums": "disabled"}

    @pytest.mark.anyio
    async def test_full_health_with_forums(self, client, monkeypatch):
        monkeypatch.setattr(settings, "forums_enabled", True)
        monkeypatch.setattr(settings, "forum_api_key", "key")
        resp = await client.get("/api/v1/health/full")
        assert resp.json()["dependencies"]["forums"] == "ok"

    @pytest.mark.anyio
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.json()["service"] == "Ore"
        assert resp.headers["x-frame-options"] == "DENY"
        assert resp.headers["x-content-type-options"] == "nosniff"
