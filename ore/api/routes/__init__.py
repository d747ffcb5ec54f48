"""API route modules."""
from __future__ import annotations

from ore.api.routes import channels, health, invites, pages, projects, versions

__all__ = ["channels", "health", "invites", "pages", "projects", "versions"]
