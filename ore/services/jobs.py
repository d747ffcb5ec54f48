"""Background jobs — outbox writes and the dispatcher that drains them.

Request handlers never talk to the forum directly.  They insert a ``Job`` row
(usually inside the transaction of the state change that caused it) and
return.  ``JobDispatcher`` runs out of band, claims due jobs, and hands each
to the handler registered for its type.

Retry policy: a failing handler reschedules its job with exponential back-off
(``retry_base_seconds * 2 ** (attempts - 1)``) until ``max_attempts`` is
spent, after which the job is parked as ``fatal_failure``.

A claimed job holds a lease of ``lease_seconds``.  If its worker never
reports back, the job becomes due again once the lease runs out, so every
job runs at least once.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ore.db.job_models import Job

logger = logging.getLogger(__name__)


class JobType(str, enum.Enum):
    update_project_topic = "update_discourse_project_topic"
    update_version_post = "update_discourse_version_post"
    post_reply = "post_discourse_reply"
    delete_topic = "delete_discourse_topic"


class JobState(str, enum.Enum):
    not_started = "not_started"
    started = "started"
    done = "done"
    fatal_failure = "fatal_failure"


@dataclass(frozen=True)
class JobDescriptor:
    """What to do (``job_type``) and with what (``payload``)."""

    job_type: JobType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def update_project_topic(cls, project_id: str) -> JobDescriptor:
        return cls(JobType.update_project_topic, {"project_id": project_id})

    @classmethod
    def update_version_post(cls, version_id: str) -> JobDescriptor:
        return cls(JobType.update_version_post, {"version_id": version_id})

    @classmethod
    def post_reply(cls, topic_id: int, poster: str, content: str) -> JobDescriptor:
        return cls(JobType.post_reply, {"topic_id": topic_id, "poster": poster, "content": content})

    @classmethod
    def delete_topic(cls, topic_id: int) -> JobDescriptor:
        return cls(JobType.delete_topic, {"topic_id": topic_id})


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


async def enqueue(session: AsyncSession, job: JobDescriptor) -> Job:
    """Insert *job* into the outbox within the caller's transaction."""
    row = Job(job_type=job.job_type.value, payload=dict(job.payload), state=JobState.not_started.value)
    session.add(row)
    await session.flush()
    logger.info("✅ Enqueued job %s (%s)", row.id, job.job_type.value)
    return row


async def enqueue_best_effort(session: AsyncSession, job: JobDescriptor) -> Job | None:
    """Enqueue *job* inside a SAVEPOINT; on failure log and carry on.

    The enclosing transaction is unaffected by a failed insert, so the
    operation that triggered the job still commits.
    """
    try:
        async with session.begin_nested():
            return await enqueue(session, job)
    except SQLAlchemyError as exc:
        logger.error("❌ Could not enqueue %s job: %s", job.job_type.value, exc)
        return None


async def list_jobs(
    session: AsyncSession,
    *,
    state: JobState | None = None,
    job_type: JobType | None = None,
) -> list[Job]:
    """Return jobs, oldest first, optionally filtered by state and type."""
    stmt = select(Job).order_by(Job.created_at.asc())
    if state is not None:
        stmt = stmt.where(Job.state == state.value)
    if job_type is not None:
        stmt = stmt.where(Job.job_type == job_type.value)
    return list((await session.execute(stmt)).scalars().all())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

JobHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[None]]


class JobDispatcher:
    """Claims due jobs and runs their handlers, one session per job."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        handlers: dict[JobType, JobHandler],
        *,
        max_attempts: int = 5,
        retry_base_seconds: float = 30.0,
        batch_size: int = 20,
        poll_interval_seconds: float = 5.0,
        lease_seconds: float = 600.0,
    ) -> None:
        self._session_factory = session_factory
        self._handlers = {k.value: v for k, v in handlers.items()}
        self._max_attempts = max_attempts
        self._retry_base = retry_base_seconds
        self._batch_size = batch_size
        self._poll_interval = poll_interval_seconds
        self._lease = timedelta(seconds=lease_seconds)

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next try after *attempts* failed attempts."""
        return timedelta(seconds=self._retry_base * (2 ** max(attempts - 1, 0)))

    async def _claim(self) -> list[str]:
        """Mark up to ``batch_size`` due jobs as started and return their ids.

        Due means ``not_started`` with ``retry_at`` in the past, or
        ``started`` with a claim older than the lease (its worker died or was
        cancelled mid-run).  A stale job that has already used its attempt
        budget is parked as ``fatal_failure`` instead of being run again.
        """
        now = _utc_now()
        async with self._session_factory() as session:
            stmt = (
                select(Job)
                .where(
                    or_(
                        and_(Job.state == JobState.not_started.value, Job.retry_at <= now),
                        and_(Job.state == JobState.started.value, Job.claimed_at <= now - self._lease),
                    )
                )
                .order_by(Job.retry_at.asc())
                .limit(self._batch_size)
                .with_for_update(skip_locked=True)
            )
            jobs = list((await session.execute(stmt)).scalars().all())
            claimed: list[str] = []
            for job in jobs:
                if job.state == JobState.started.value:
                    logger.warning("⚠️ Job %s (%s) lease expired on attempt %d", job.id, job.job_type, job.attempts)
                    if job.attempts >= self._max_attempts:
                        job.state = JobState.fatal_failure.value
                        job.last_error = f"Lease expired after {job.attempts} attempts"
                        continue
                job.state = JobState.started.value
                job.attempts += 1
                job.claimed_at = now
                claimed.append(job.id)
            await session.commit()
            return claimed

    async def _run_job(self, job_id: str) -> bool:
        """Run one claimed job; return True when it completed."""
        async with self._session_factory() as session:
            job = await session.get(Job, job_id)
            if job is None:
                return False
            job_type, payload, attempts = job.job_type, dict(job.payload or {}), job.attempts

            handler = self._handlers.get(job_type)
            if handler is None:
                job.state = JobState.fatal_failure.value
                job.last_error = f"No handler for job type '{job_type}'"
                await session.commit()
                logger.error("❌ Job %s has unknown type '%s'", job_id, job_type)
                return False

            try:
                await handler(session, payload)
            except Exception as exc:
                await session.rollback()
                await self._record_failure(session, job_id, attempts, exc)
                return False

            job.state = JobState.done.value
            job.last_error = None
            await session.commit()
            logger.info("✅ Job %s (%s) done on attempt %d", job_id, job_type, attempts)
            return True

    async def _record_failure(
        self, session: AsyncSession, job_id: str, attempts: int, exc: Exception
    ) -> None:
        job = await session.get(Job, job_id)
        if job is None:
            return
        job.last_error = f"{type(exc).__name__}: {exc}"
        if attempts >= self._max_attempts:
            job.state = JobState.fatal_failure.value
            logger.error(
                "❌ Job %s (%s) failed permanently after %d attempts: %s",
                job_id,
                job.job_type,
                attempts,
                exc,
            )
        else:
            delay = self.backoff(attempts)
            job.state = JobState.not_started.value
            job.retry_at = _utc_now() + delay
            logger.warning(
                "⚠️ Job %s (%s) attempt %d failed — retrying in %.0fs: %s",
                job_id,
                job.job_type,
                attempts,
                delay.total_seconds(),
                exc,
            )
        await session.commit()

    async def run_once(self) -> int:
        """Process every job that is due now; return how many completed."""
        job_ids = await self._claim()
        completed = 0
        for job_id in job_ids:
            if await self._run_job(job_id):
                completed += 1
        return completed

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Poll for due jobs until *stop* is set."""
        stop = stop or asyncio.Event()
        logger.info("Job dispatcher started (poll every %.1fs)", self._poll_interval)
        while not stop.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError as exc:
                logger.error("❌ Job dispatcher poll failed: %s", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Job dispatcher stopped")
