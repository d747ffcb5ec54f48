"""
Tests for ore.services.jobs — the outbox and the dispatcher.

The dispatcher opens its own sessions and commits them, so these tests use a
file-backed SQLite database instead of the shared in-memory session.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ore.db.database import Base
from ore.db.job_models import Job
from ore.services import jobs as jobs_module
from ore.services.jobs import (
    JobDescriptor,
    JobDispatcher,
    JobState,
    JobType,
    enqueue,
    enqueue_best_effort,
    list_jobs,
)


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _enqueue(factory, job: JobDescriptor) -> str:
    async with factory() as session:
        row = await enqueue(session, job)
        await session.commit()
        return row.id


async def _job(factory, job_id: str) -> Job:
    async with factory() as session:
        job = await session.get(Job, job_id)
        assert job is not None
        return job


def _naive_utc_now() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


class TestDescriptors:
    def test_payloads(self):
        assert JobDescriptor.update_project_topic("p").payload == {"project_id": "p"}
        assert JobDescriptor.update_version_post("v").payload == {"version_id": "v"}
        assert JobDescriptor.post_reply(3, "Spongie", "hi").payload == {
            "topic_id": 3,
            "poster": "Spongie",
            "content": "hi",
        }
        assert JobDescriptor.delete_topic(3).job_type is JobType.delete_topic


class TestEnqueue:
    @pytest.mark.anyio
    async def test_enqueue_in_caller_transaction(self, db_session):
        row = await enqueue(db_session, JobDescriptor.delete_topic(5))
        assert row.state == JobState.not_started.value
        assert row.attempts == 0
        jobs = await list_jobs(db_session, state=JobState.not_started)
        assert [j.id for j in jobs] == [row.id]

    @pytest.mark.anyio
    async def test_best_effort_returns_row(self, db_session):
        row = await enqueue_best_effort(db_session, JobDescriptor.delete_topic(5))
        assert row is not None
        assert await list_jobs(db_session, job_type=JobType.delete_topic) != []

    @pytest.mark.anyio
    async def test_best_effort_failure_keeps_transaction(self, db_session, project, monkeypatch):
        async def broken_enqueue(session, job):
            session.add(Job(job_type=None, payload={}))
            await session.flush()

        monkeypatch.setattr(jobs_module, "enqueue", broken_enqueue)
        assert await enqueue_best_effort(db_session, JobDescriptor.delete_topic(5)) is None

        project.description = "still writable"
        await db_session.commit()
        assert await list_jobs(db_session, job_type=JobType.delete_topic) == []


class TestDispatcher:
    @pytest.mark.anyio
    async def test_runs_handler_and_marks_done(self, session_factory):
        seen: list[dict[str, Any]] = []

        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            seen.append(payload)

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(9))
        dispatcher = JobDispatcher(session_factory, {JobType.delete_topic: handler})

        assert await dispatcher.run_once() == 1
        assert seen == [{"topic_id": 9}]
        job = await _job(session_factory, job_id)
        assert job.state == JobState.done.value
        assert job.attempts == 1
        assert job.last_error is None

    @pytest.mark.anyio
    async def test_failure_schedules_retry_with_backoff(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            raise RuntimeError("forum down")

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(9))
        dispatcher = JobDispatcher(session_factory, {JobType.delete_topic: handler}, retry_base_seconds=60)

        before = _naive_utc_now()
        assert await dispatcher.run_once() == 0
        job = await _job(session_factory, job_id)
        assert job.state == JobState.not_started.value
        assert job.attempts == 1
        assert job.last_error == "RuntimeError: forum down"
        assert job.retry_at.replace(tzinfo=None) >= before + timedelta(seconds=59)

        # Not due yet: nothing is claimed.
        assert await dispatcher.run_once() == 0
        assert (await _job(session_factory, job_id)).attempts == 1

    @pytest.mark.anyio
    async def test_gives_up_after_max_attempts(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            raise RuntimeError("still down")

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(9))
        dispatcher = JobDispatcher(
            session_factory, {JobType.delete_topic: handler}, max_attempts=2, retry_base_seconds=0
        )

        await dispatcher.run_once()
        assert (await _job(session_factory, job_id)).state == JobState.not_started.value
        await dispatcher.run_once()
        job = await _job(session_factory, job_id)
        assert job.state == JobState.fatal_failure.value
        assert job.attempts == 2

    @pytest.mark.anyio
    async def test_handler_changes_rolled_back_on_failure(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            session.add(Job(job_type="side_effect", payload={}))
            await session.flush()
            raise RuntimeError("boom")

        await _enqueue(session_factory, JobDescriptor.delete_topic(1))
        await JobDispatcher(session_factory, {JobType.delete_topic: handler}).run_once()

        async with session_factory() as session:
            types = [j.job_type for j in await list_jobs(session)]
        assert "side_effect" not in types

    @pytest.mark.anyio
    async def test_unknown_type_is_fatal(self, session_factory):
        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(9))
        assert await JobDispatcher(session_factory, {}).run_once() == 0
        job = await _job(session_factory, job_id)
        assert job.state == JobState.fatal_failure.value
        assert "No handler" in (job.last_error or "")

    @pytest.mark.anyio
    async def test_batch_size(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            return None

        for i in range(3):
            await _enqueue(session_factory, JobDescriptor.delete_topic(i))
        dispatcher = JobDispatcher(session_factory, {JobType.delete_topic: handler}, batch_size=2)
        assert await dispatcher.run_once() == 2
        assert await dispatcher.run_once() == 1
        assert await dispatcher.run_once() == 0

    def test_backoff_doubles(self):
        dispatcher = JobDispatcher(lambda: None, {}, retry_base_seconds=10)  # type: ignore[arg-type]
        assert [dispatcher.backoff(n).total_seconds() for n in (1, 2, 3)] == [10, 20, 40]

    @pytest.mark.anyio
    async def test_run_forever_stops(self, session_factory):
        done = asyncio.Event()

        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            done.set()

        await _enqueue(session_factory, JobDescriptor.delete_topic(1))
        stop = asyncio.Event()
        dispatcher = JobDispatcher(session_factory, {JobType.delete_topic: handler}, poll_interval_seconds=0.01)
        task = asyncio.create_task(dispatcher.run_forever(stop))
        await asyncio.wait_for(done.wait(), timeout=5)
        stop.set()
        await asyncio.wait_for(task, timeout=5)


class TestLease:
    @pytest.mark.anyio
    async def test_abandoned_claim_runs_again(self, session_factory):
        calls: list[dict[str, Any]] = []

        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            calls.append(payload)

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(4))
        # A worker claims the job and dies before running it.
        crashed = JobDispatcher(session_factory, {JobType.delete_topic: handler}, lease_seconds=0)
        assert await crashed._claim() == [job_id]
        assert (await _job(session_factory, job_id)).state == JobState.started.value

        fresh = JobDispatcher(session_factory, {JobType.delete_topic: handler}, lease_seconds=0)
        assert await fresh.run_once() == 1
        assert calls == [{"topic_id": 4}]
        job = await _job(session_factory, job_id)
        assert job.state == JobState.done.value
        assert job.attempts == 2

    @pytest.mark.anyio
    async def test_live_claim_is_left_alone(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            return None

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(4))
        dispatcher = JobDispatcher(session_factory, {JobType.delete_topic: handler}, lease_seconds=600)
        assert await dispatcher._claim() == [job_id]
        assert await dispatcher.run_once() == 0
        job = await _job(session_factory, job_id)
        assert job.state == JobState.started.value
        assert job.attempts == 1

    @pytest.mark.anyio
    async def test_expired_claim_without_attempts_left_is_fatal(self, session_factory):
        async def handler(session: AsyncSession, payload: dict[str, Any]) -> None:
            return None

        job_id = await _enqueue(session_factory, JobDescriptor.delete_topic(4))
        dispatcher = JobDispatcher(
            session_factory, {JobType.delete_topic: handler}, max_attempts=1, lease_seconds=0
        )
        await dispatcher._claim()
        assert await dispatcher.run_once() == 0
        job = await _job(session_factory, job_id)
        assert job.state == JobState.fatal_failure.value
        assert job.last_error == "Lease expired after 1 attempts"
