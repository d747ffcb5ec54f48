"""Forum (Discourse) integration — HTTP client and job handlers.

Nothing here runs inside a request.  Request handlers enqueue jobs
(``ore.services.jobs``) and the dispatcher calls the handlers built by
``build_forum_handlers``, which in turn use ``DiscourseClient``.

The client covers only the calls Ore makes: create a topic, edit its first
post and title, toggle its visibility, reply, and delete it.  A non-2xx
response, a timeout or a connection error raises ``ForumError`` so the
dispatcher can retry the job.

With forums disabled (``client is None``) every handler logs and completes,
so queued jobs drain instead of piling up.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ore.config import settings
from ore.db.project_models import Project, Version
from ore.models.projects import Visibility
from ore.services.jobs import JobHandler, JobType

logger = logging.getLogger(__name__)


class ForumError(Exception):
    """A forum API call failed; the job that made it should be retried."""


class DiscourseClient:
    """Minimal async Discourse API client authenticated with an admin API key."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        admin_user: str,
        *,
        category_id: int,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.admin_user = admin_user
        self.category_id = category_id
        self.timeout = timeout
        self._transport = transport

    def _headers(self, username: str | None) -> dict[str, str]:
        return {
            "Api-Key": self.api_key,
            "Api-Username": username or self.admin_user,
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        username: str | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, url, json=json, headers=self._headers(username))
        except httpx.TimeoutException as exc:
            raise ForumError(f"{method} {path}: timeout: {exc}") from exc
        except httpx.RequestError as exc:
            raise ForumError(f"{method} {path}: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise ForumError(f"{method} {path}: HTTP {resp.status_code}: {resp.text[:512]}")
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def create_topic(self, title: str, content: str, *, username: str | None = None) -> tuple[int, int]:
        """Create a topic in the plugin category; return ``(topic_id, post_id)``."""
        body = await self._request(
            "POST",
            "/posts.json",
            json={"title": title, "raw": content, "category": self.category_id},
            username=username,
        )
        try:
            return int(body["topic_id"]), int(body["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ForumError(f"Unexpected create-topic response: {body!r}") from exc

    async def update_post(self, post_id: int, content: str) -> None:
        await self._request("PUT", f"/posts/{post_id}.json", json={"post": {"raw": content}})

    async def update_topic_title(self, topic_id: int, title: str) -> None:
        await self._request("PUT", f"/t/-/{topic_id}.json", json={"title": title})

    async def set_topic_visible(self, topic_id: int, visible: bool) -> None:
        await self._request(
            "PUT",
            f"/t/{topic_id}/status.json",
            json={"status": "visible", "enabled": "true" if visible else "false"},
        )

    async def post_reply(self, topic_id: int, content: str, *, username: str | None = None) -> int:
        """Reply to *topic_id* as *username*; return the new post id."""
        body = await self._request(
            "POST",
            "/posts.json",
            json={"topic_id": topic_id, "raw": content},
            username=username,
        )
        try:
            return int(body["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ForumError(f"Unexpected reply response: {body!r}") from exc

    async def delete_topic(self, topic_id: int) -> None:
        await self._request("DELETE", f"/t/{topic_id}.json")


def get_discourse_client() -> DiscourseClient | None:
    """Build the client from settings, or ``None`` when forums are disabled."""
    if not settings.forums_enabled:
        return None
    if not settings.forum_api_key:
        logger.warning("⚠️ ORE_FORUMS_ENABLED is set but ORE_FORUM_API_KEY is empty; forum jobs will be skipped")
        return None
    return DiscourseClient(
        settings.forum_base_url,
        settings.forum_api_key,
        settings.forum_admin_user,
        category_id=settings.forum_category_id,
        timeout=settings.forum_timeout,
    )


# ---------------------------------------------------------------------------
# Post content
# ---------------------------------------------------------------------------


def project_topic_title(project: Project) -> str:
    return f"[{project.owner_name}] {project.name}"


def project_topic_content(project: Project) -> str:
    description = project.description or "*No description given.*"
    return f"# {project.name}\n\n{description}\n\n---\n/{project.owner_name}/{project.slug}"


def version_post_content(project: Project, version: Version) -> str:
    lines = [f"### {project.name} {version.name} has been released!"]
    if version.description:
        lines += ["", version.description]
    lines += ["", f"/{project.owner_name}/{project.slug}/versions/{version.slug}"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Job handlers
# ---------------------------------------------------------------------------


def build_forum_handlers(client: DiscourseClient | None) -> dict[JobType, JobHandler]:
    """Return one handler per forum job type, bound to *client*."""

    async def update_project_topic(session: AsyncSession, payload: dict[str, Any]) -> None:
        project = await session.get(Project, payload["project_id"])
        if project is None:
            logger.info("Project %s no longer exists; nothing to sync", payload["project_id"])
            return
        if client is None:
            logger.info("Forums disabled; skipping topic sync for %s/%s", project.owner_name, project.slug)
            return

        visible = Visibility(project.visibility).is_public
        if project.topic_id is None:
            if not visible:
                return
            topic_id, post_id = await client.create_topic(
                project_topic_title(project),
                project_topic_content(project),
                username=project.owner_name,
            )
            project.topic_id, project.post_id = topic_id, post_id
            logger.info("✅ Created forum topic %d for %s/%s", topic_id, project.owner_name, project.slug)
            return

        await client.update_topic_title(project.topic_id, project_topic_title(project))
        if project.post_id is not None:
            await client.update_post(project.post_id, project_topic_content(project))
        await client.set_topic_visible(project.topic_id, visible)
        logger.info("✅ Synced forum topic %d (visible=%s)", project.topic_id, visible)

    async def update_version_post(session: AsyncSession, payload: dict[str, Any]) -> None:
        version = await session.get(Version, payload["version_id"])
        if version is None:
            logger.info("Version %s no longer exists; nothing to post", payload["version_id"])
            return
        if client is None:
            logger.info("Forums disabled; skipping release post for version %s", version.id)
            return
        project = await session.get(Project, version.project_id)
        if project is None:
            return
        if project.topic_id is None:
            # Retried until the project topic job has created the topic.
            raise ForumError(f"Project {project.id} has no forum topic yet")

        content = version_post_content(project, version)
        if version.post_id is None:
            version.post_id = await client.post_reply(project.topic_id, content, username=project.owner_name)
        else:
            await client.update_post(version.post_id, content)
        logger.info("✅ Posted release of %s %s to topic %d", project.name, version.name, project.topic_id)

    async def post_reply(session: AsyncSession, payload: dict[str, Any]) -> None:
        if client is None:
            logger.info("Forums disabled; dropping reply to topic %s", payload.get("topic_id"))
            return
        await client.post_reply(int(payload["topic_id"]), payload["content"], username=payload.get("poster"))
        logger.info("✅ Posted reply by %s to topic %s", payload.get("poster"), payload["topic_id"])

    async def delete_topic(session: AsyncSession, payload: dict[str, Any]) -> None:
        if client is None:
            logger.info("Forums disabled; not deleting topic %s", payload.get("topic_id"))
            return
        await client.delete_topic(int(payload["topic_id"]))
        logger.info("✅ Deleted forum topic %s", payload["topic_id"])

    return {
        JobType.update_project_topic: update_project_topic,
        JobType.update_version_post: update_version_post,
        JobType.post_reply: post_reply,
        JobType.delete_topic: delete_topic,
    }
