"""
Tests for ore.services.visibility — the project visibility state machine.

Covers:
  1. Allowed / rejected transitions and self-loops
  2. Required permissions and the NeedsChanges comment rule
  3. Audit trail rows and topic sync jobs, including a failed enqueue
  4. send_for_approval, soft and hard delete
"""
from __future__ import annotations

import pytest
from sqlalchemy import select

from ore.db.job_models import Job
from ore.db.project_models import Project, ProjectVisibilityChange
from ore.errors import InvalidTransition, MissingComment, PermissionDenied, ProjectNotFound
from ore.models.projects import Visibility
from ore.permissions import (
    Permission,
    ProjectRole,
    checker,
    global_permissions,
    role_permissions,
)
from ore.services import jobs as jobs_module
from ore.services.jobs import JobType, list_jobs
from ore.services.visibility import (
    can_transition,
    get_last_visibility_change,
    hard_delete_project,
    list_visibility_changes,
    required_permission,
    send_for_approval,
    set_visibility,
    soft_delete_project,
)

V = Visibility
OWNER = checker(role_permissions(ProjectRole.owner.value))
MODERATOR = checker(global_permissions(["moderator"]))
ADMIN = checker(global_permissions(["admin"]))
NOBODY = checker(Permission.NONE)


async def _topic_jobs(session) -> int:
    return len(await list_jobs(session, job_type=JobType.update_project_topic))


class TestTransitionTable:
    @pytest.mark.parametrize(
        "old, new",
        [
            (V.New, V.Public),
            (V.Public, V.NeedsChanges),
            (V.NeedsChanges, V.NeedsApproval),
            (V.NeedsChanges, V.Public),
            (V.NeedsApproval, V.Public),
            (V.Public, V.SoftDelete),
            (V.New, V.SoftDelete),
            (V.Public, V.Public),
        ],
    )
    def test_allowed(self, old, new):
        assert can_transition(old, new)

    @pytest.mark.parametrize(
        "old, new",
        [
            (V.SoftDelete, V.Public),
            (V.Public, V.New),
            (V.New, V.NeedsApproval),
            (V.NeedsApproval, V.NeedsChanges),
        ],
    )
    def test_rejected(self, old, new):
        assert not can_transition(old, new)

    def test_required_permissions(self):
        assert required_permission(V.Public, V.SoftDelete) == Permission.DELETE_PROJECT
        assert required_permission(V.NeedsChanges, V.NeedsApproval) == Permission.EDIT_PROJECT_SETTINGS
        assert required_permission(V.New, V.Public) == Permission.REVIEWER
        assert required_permission(V.Public, V.NeedsChanges) == Permission.REVIEWER


class TestSetVisibility:
    @pytest.mark.anyio
    async def test_approve_new_project(self, db_session, project, moderator):
        result = await set_visibility(
            db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR
        )
        assert result.project.visibility == V.Public.value
        assert result.project.visibility_name == "visibility.name.public"
        assert result.change.old_visibility == V.New.value
        assert result.change.new_visibility == V.Public.value
        assert result.change.created_by_name == moderator.name

    @pytest.mark.anyio
    async def test_every_transition_writes_one_change(self, db_session, project, moderator):
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        await set_visibility(
            db_session, project.id, V.NeedsChanges, comment="fix it", actor_id=moderator.id, has_permission=MODERATOR
        )
        changes = await list_visibility_changes(db_session, project.id)
        assert [(c.old_visibility, c.new_visibility) for c in changes] == [
            (V.New.value, V.Public.value),
            (V.Public.value, V.NeedsChanges.value),
        ]
        last = await get_last_visibility_change(db_session, project.id)
        assert last is not None
        assert last.comment == "fix it"

    @pytest.mark.anyio
    async def test_self_loop_is_recorded(self, db_session, project, moderator):
        await set_visibility(db_session, project.id, V.New, comment="", actor_id=moderator.id, has_permission=ADMIN)
        rows = (await db_session.execute(select(ProjectVisibilityChange))).scalars().all()
        assert len(rows) == 1
        assert rows[0].old_visibility == rows[0].new_visibility == V.New.value

    @pytest.mark.anyio
    async def test_invalid_transition(self, db_session, project, moderator):
        with pytest.raises(InvalidTransition):
            await set_visibility(
                db_session, project.id, V.NeedsApproval, comment="", actor_id=moderator.id, has_permission=ADMIN
            )
        assert (await db_session.execute(select(ProjectVisibilityChange))).first() is None

    @pytest.mark.anyio
    async def test_unknown_visibility_value(self, db_session, project, moderator):
        with pytest.raises(InvalidTransition):
            await set_visibility(db_session, project.id, 42, comment="", actor_id=moderator.id, has_permission=ADMIN)

    @pytest.mark.anyio
    async def test_owner_cannot_approve(self, db_session, project, owner):
        with pytest.raises(PermissionDenied):
            await set_visibility(db_session, project.id, V.Public, comment="", actor_id=owner.id, has_permission=OWNER)
        await db_session.refresh(project)
        assert project.visibility == V.New.value

    @pytest.mark.anyio
    async def test_needs_changes_requires_comment(self, db_session, project, moderator):
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        with pytest.raises(MissingComment):
            await set_visibility(
                db_session, project.id, V.NeedsChanges, comment="   ", actor_id=moderator.id, has_permission=MODERATOR
            )

    @pytest.mark.anyio
    async def test_unknown_project(self, db_session, moderator):
        with pytest.raises(ProjectNotFound):
            await set_visibility(db_session, "missing", V.Public, comment="", actor_id=moderator.id, has_permission=ADMIN)

    @pytest.mark.anyio
    async def test_publicness_flip_queues_topic_job(self, db_session, project, moderator):
        before = await _topic_jobs(db_session)
        # New → Public: both public, no sync needed
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        assert await _topic_jobs(db_session) == before
        await set_visibility(
            db_session, project.id, V.NeedsChanges, comment="x", actor_id=moderator.id, has_permission=MODERATOR
        )
        assert await _topic_jobs(db_session) == before + 1

    @pytest.mark.anyio
    async def test_soft_delete_queues_topic_job(self, db_session, project, moderator):
        before = await _topic_jobs(db_session)
        await set_visibility(
            db_session, project.id, V.SoftDelete, comment="", actor_id=moderator.id, has_permission=MODERATOR
        )
        assert await _topic_jobs(db_session) == before + 1


    @pytest.mark.anyio
    async def test_commits_when_job_cannot_be_queued(self, db_session, project, monkeypatch):
        async def broken_enqueue(session, job):
            # job_type is NOT NULL, so the outbox insert fails inside its savepoint.
            session.add(Job(job_type=None, payload=job.payload))
            await session.flush()

        monkeypatch.setattr(jobs_module, "enqueue", broken_enqueue)
        jobs_before = await _topic_jobs(db_session)

        # Soft delete always syncs the forum topic.
        result = await set_visibility(
            db_session, project.id, V.SoftDelete, comment="", actor_id=project.owner_id, has_permission=MODERATOR
        )
        await db_session.commit()

        assert result.project.visibility == V.SoftDelete.value
        stored = (await db_session.execute(select(Project.visibility).where(Project.id == project.id))).scalar_one()
        assert stored == V.SoftDelete.value
        changes = (await db_session.execute(select(ProjectVisibilityChange))).scalars().all()
        assert [(c.old_visibility, c.new_visibility) for c in changes] == [(V.New.value, V.SoftDelete.value)]
        assert await _topic_jobs(db_session) == jobs_before


class TestSendForApproval:
    @pytest.mark.anyio
    async def test_from_needs_changes(self, db_session, project, owner, moderator):
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        await set_visibility(
            db_session, project.id, V.NeedsChanges, comment="x", actor_id=moderator.id, has_permission=MODERATOR
        )
        result = await send_for_approval(db_session, project.id, actor_id=owner.id, has_permission=OWNER)
        assert result is not None
        assert result.project.visibility == V.NeedsApproval.value

    @pytest.mark.anyio
    async def test_noop_in_other_states(self, db_session, project, owner):
        assert await send_for_approval(db_session, project.id, actor_id=owner.id, has_permission=OWNER) is None
        assert project.visibility == V.New.value


class TestDeletion:
    @pytest.mark.anyio
    async def test_soft_delete_new_project_removes_it(self, db_session, project, owner, files, upload_version):
        await upload_version(project, "1.0")
        project_id = project.id
        result = await soft_delete_project(
            db_session, project_id, comment="", actor_id=owner.id, has_permission=OWNER, files=files
        )
        assert result is None
        assert await db_session.get(Project, project_id) is None
        assert not files.project_dir(owner.name, "Example").exists()

    @pytest.mark.anyio
    async def test_soft_delete_reviewed_project(self, db_session, project, owner, moderator, files):
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        result = await soft_delete_project(
            db_session, project.id, comment="bye", actor_id=owner.id, has_permission=OWNER, files=files
        )
        assert result is not None
        assert result.project.visibility == V.SoftDelete.value
        assert result.change.comment == "bye"

    @pytest.mark.anyio
    async def test_soft_delete_requires_permission(self, db_session, project, other_user, files):
        with pytest.raises(PermissionDenied):
            await soft_delete_project(
                db_session, project.id, comment="", actor_id=other_user.id, has_permission=NOBODY, files=files
            )

    @pytest.mark.anyio
    async def test_hard_delete_requires_admin_for_reviewed(self, db_session, project, owner, moderator, files):
        await set_visibility(db_session, project.id, V.Public, comment="", actor_id=moderator.id, has_permission=MODERATOR)
        with pytest.raises(PermissionDenied):
            await hard_delete_project(db_session, project.id, actor_id=owner.id, has_permission=OWNER, files=files)

        project_id = project.id
        await hard_delete_project(db_session, project_id, actor_id=None, has_permission=ADMIN, files=files)
        assert await db_session.get(Project, project_id) is None

    @pytest.mark.anyio
    async def test_hard_delete_queues_topic_deletion(self, db_session, project, files):
        project.topic_id = 77
        await db_session.flush()
        await hard_delete_project(db_session, project.id, actor_id=None, has_permission=ADMIN, files=files)
        jobs = await list_jobs(db_session, job_type=JobType.delete_topic)
        assert [j.payload for j in jobs] == [{"topic_id": 77}]
