"""ore-admin — operational commands for an Ore deployment.

Commands:
  dispatch-jobs  Run the forum job dispatcher (``--once`` for a single pass).
  seed           Reset the database and fill it with dummy data.
  reset          Delete every project, user and uploaded file.
  create-token   Print an access token for a user id.

Exit codes:
  0 — success
  1 — user error (bad arguments)
  3 — internal error
"""
from __future__ import annotations

import asyncio
import enum
import logging
from pathlib import Path

import typer

from ore.auth.tokens import AccessCodeError, create_access_token
from ore.config import settings
from ore.db import AsyncSessionLocal, close_db, init_db
from ore.errors import OreError
from ore.services.forums import build_forum_handlers, get_discourse_client
from ore.services.jobs import JobDispatcher
from ore.services.project_files import get_project_files
from ore.services.seed import SeedSummary, reset as reset_data, seed as seed_data

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="ore-admin",
    help="Ore administration commands.",
    no_args_is_help=True,
)


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    USER_ERROR = 1
    INTERNAL_ERROR = 3


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _dispatch_async(once: bool) -> int:
    await init_db()
    try:
        dispatcher = JobDispatcher(
            AsyncSessionLocal,
            build_forum_handlers(get_discourse_client()),
            max_attempts=settings.job_max_attempts,
            retry_base_seconds=settings.job_retry_base_seconds,
            batch_size=settings.job_batch_size,
            poll_interval_seconds=settings.job_poll_interval_seconds,
            lease_seconds=settings.job_lease_seconds,
        )
        if once:
            return await dispatcher.run_once()
        await dispatcher.run_forever()
        return 0
    finally:
        await close_db()


@app.command("dispatch-jobs")
def dispatch_jobs(
    once: bool = typer.Option(False, "--once", help="Process one batch of due jobs and exit."),
) -> None:
    """Run the background job dispatcher."""
    _configure_logging()
    try:
        done = asyncio.run(_dispatch_async(once))
    except KeyboardInterrupt:
        typer.echo("Stopped.")
        return
    if once:
        typer.echo(f"✅ Completed {done} job(s)")


async def _seed_async(users: int, versions: int, channels: int, plugin: Path | None) -> SeedSummary:
    await init_db()
    try:
        async with AsyncSessionLocal() as session:
            summary = await seed_data(
                session,
                get_project_files(),
                users=users,
                versions=versions,
                channels=channels,
                template=plugin,
            )
            await session.commit()
            return summary
    finally:
        await close_db()


@app.command("seed")
def seed(
    users: int = typer.Option(200, "--users", min=0, help="Number of users (one project each)."),
    versions: int = typer.Option(0, "--versions", min=0, help="Versions per extra channel."),
    channels: int = typer.Option(1, "--channels", min=0, help="Extra channels per project."),
    plugin: Path | None = typer.Option(
        None,
        "--plugin",
        exists=True,
        dir_okay=False,
        help="Template jar whose contents are copied into every generated version.",
    ),
) -> None:
    """Reset the database and fill it with dummy data.  Forum jobs are not queued."""
    _configure_logging()
    try:
        summary = asyncio.run(_seed_async(users, versions, channels, plugin))
    except OreError as exc:
        typer.echo(f"❌ Seeding failed: {exc}")
        raise typer.Exit(code=int(ExitCode.INTERNAL_ERROR))
    typer.echo(
        f"✅ Seeded {summary.users} users, {summary.projects} projects, "
        f"{summary.channels} channels, {summary.versions} versions"
    )


async def _reset_async() -> None:
    await init_db()
    try:
        async with AsyncSessionLocal() as session:
            await reset_data(session, get_project_files())
            await session.commit()
    finally:
        await close_db()


@app.command("reset")
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every project, user and uploaded file."""
    _configure_logging()
    if not yes:
        typer.confirm("This deletes ALL projects, users and uploads. Continue?", abort=True)
    asyncio.run(_reset_async())
    typer.echo("✅ Reset complete")


@app.command("create-token")
def create_token(
    user_id: str = typer.Argument(..., help="Ore user id to issue the token for."),
    hours: float = typer.Option(24.0, "--hours", help="Validity in hours."),
) -> None:
    """Print a signed access token."""
    try:
        token = create_access_token(user_id, expires_hours=hours)
    except AccessCodeError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=int(ExitCode.USER_ERROR))
    typer.echo(token)


if __name__ == "__main__":
    app()
