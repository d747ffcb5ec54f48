"""Pytest configuration and fixtures."""
from __future__ import annotations

import json
import logging
import zipfile
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ore.api.routes import versions as version_routes
from ore.auth.dependencies import get_fake_user
from ore.auth.tokens import create_access_token
from ore.config import DEFAULT_CHANNEL_NAME, FakeUser, settings
from ore.db import database
from ore.db.database import Base, get_db
from ore.db.models import Organization, OrganizationUserRole, User
from ore.db.project_models import Project
from ore.main import app
from ore.models.projects import VersionUploadResponse
from ore.permissions import OrganizationRole
from ore.services.channels import get_channel
from ore.services.plugin_ingest import load_plugin_file
from ore.services.project_files import ProjectFiles, get_project_files
from ore.services.projects import create_project, get_project
from ore.services.versions import create_version

TEST_SECRET = "test-secret-for-unit-tests-only-32char"

logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _token_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    """Sign tokens with a fixed secret so tests never depend on the environment."""
    monkeypatch.setattr(settings, "access_token_secret", TEST_SECRET)
    monkeypatch.setattr(settings, "access_token_algorithm", "HS256")


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    version_routes.limiter.reset()
    yield


@pytest.fixture
def files(tmp_path: Path) -> ProjectFiles:
    return ProjectFiles(tmp_path / "uploads")


@pytest_asyncio.fixture
async def db_session():
    """Create an in-memory test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    old_engine = database._engine
    old_factory = database._async_session_factory
    database._engine = engine
    database._async_session_factory = async_session_factory
    try:
        async with async_session_factory() as session:
            async def override_get_db():
                yield session
            app.dependency_overrides[get_db] = override_get_db
            yield session
            app.dependency_overrides.clear()
    finally:
        database._engine = old_engine
        database._async_session_factory = old_factory
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, files: ProjectFiles):
    """Async test client on the app, with test storage and no fake user."""
    app.dependency_overrides[get_project_files] = lambda: files
    app.dependency_overrides[get_fake_user] = lambda: FakeUser(
        enabled=False, id="", name="", full_name="", email=""
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Users and auth
# -----------------------------------------------------------------------------


async def _user(session: AsyncSession, name: str, global_roles: list[str] | None = None) -> User:
    user = User(name=name, full_name=name, email=f"{name.lower()}@example.org", global_roles=global_roles or [])
    session.add(user)
    await session.flush()
    return user


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession) -> User:
    return await _user(db_session, "Spongie")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _user(db_session, "Notch")


@pytest_asyncio.fixture
async def moderator(db_session: AsyncSession) -> User:
    return await _user(db_session, "Moddy", ["moderator"])


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _user(db_session, "Admin", ["admin"])


def _bearer(user: User) -> dict[str, str]:
    token = create_access_token(user_id=user.id, expires_hours=1)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a user (1 hour token)."""
    return _bearer


@pytest.fixture
def make_organization(db_session: AsyncSession):
    """Factory creating an organization, its account user and an accepted owner role."""

    async def _make(name: str, owner: User) -> Organization:
        account = User(name=name)
        db_session.add(account)
        await db_session.flush()
        org = Organization(name=name, owner_id=owner.id, user_id=account.id)
        db_session.add(org)
        await db_session.flush()
        db_session.add(
            OrganizationUserRole(
                user_id=owner.id,
                organization_id=org.id,
                role_type=OrganizationRole.owner.value,
                is_accepted=True,
            )
        )
        await db_session.flush()
        return org

    return _make


@pytest.fixture
def auth_headers(owner: User) -> dict[str, str]:
    return _bearer(owner)


# -----------------------------------------------------------------------------
# Projects and plugin files
# -----------------------------------------------------------------------------


@pytest_asyncio.fixture
async def project(db_session: AsyncSession, owner: User) -> Project:
    """A New project "Example" owned by ``owner`` with its default channel."""
    created = await create_project(db_session, actor=owner, name="Example", description="An example plugin")
    return await get_project(db_session, created.owner_name, created.slug)


PluginJarFactory = Callable[..., Path]


def write_plugin_jar(
    path: Path,
    plugin_id: str = "example",
    version: str = "1.0",
    *,
    name: str | None = None,
    dependencies: Sequence[tuple[str, str | None]] = (),
    mixin: bool = False,
    descriptor: str = "sponge",
    extra: bytes = b"",
) -> Path:
    """Write a plugin jar declaring one plugin.

    *descriptor* is ``"sponge"`` (META-INF/sponge_plugins.json) or
    ``"mcmod"`` (mcmod.info).  *extra* is stored as a class file so callers
    can vary the bytes without touching metadata.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as jar:
        manifest = "Manifest-Version: 1.0\n"
        if mixin:
            manifest += "MixinConfigs: mixins.example.json\n"
        jar.writestr("META-INF/MANIFEST.MF", manifest)
        if descriptor == "sponge":
            jar.writestr(
                "META-INF/sponge_plugins.json",
                json.dumps({
                    "plugins": [{
                        "id": plugin_id,
                        "name": name or plugin_id,
                        "version": version,
                        "dependencies": [{"id": d, "version": v} for d, v in dependencies],
                    }]
                }),
            )
        else:
            jar.writestr(
                "mcmod.info",
                json.dumps([{
                    "modid": plugin_id,
                    "name": name or plugin_id,
                    "version": version,
                    "requiredMods": [f"{d}@{v}" if v else d for d, v in dependencies],
                }]),
            )
        jar.writestr("com/example/Plugin.class", b"\xca\xfe\xba\xbe" + extra)
    return path


@pytest.fixture
def make_jar(tmp_path: Path) -> PluginJarFactory:
    """Factory writing plugin jars under ``tmp_path/jars``."""

    def _make(plugin_id: str = "example", version: str = "1.0", **kwargs) -> Path:
        filename = kwargs.pop("filename", f"{plugin_id}-{version}.jar")
        return write_plugin_jar(tmp_path / "jars" / filename, plugin_id, version, **kwargs)

    return _make


@pytest.fixture
def upload_version(db_session: AsyncSession, files: ProjectFiles, make_jar: PluginJarFactory):
    """Upload a freshly written jar as a version of a project.

    Keyword arguments named like ``create_version`` options are passed to it;
    the rest go to the jar writer.
    """
    version_options = {"description", "create_forum_post", "stability", "release_type"}

    async def _upload(
        project: Project,
        version: str = "1.0",
        *,
        channel: str = DEFAULT_CHANNEL_NAME,
        **kwargs,
    ) -> VersionUploadResponse:
        options = {k: kwargs.pop(k) for k in list(kwargs) if k in version_options}
        path = make_jar("example", version, **kwargs)
        plugin = load_plugin_file(path, project.owner_id)
        target = await get_channel(db_session, project.id, channel)
        assert target is not None, f"no channel {channel}"
        return await create_version(
            db_session, plugin, project=project, channel_id=target.id, files=files, **options
        )

    return _upload
