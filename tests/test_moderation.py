"""Tests for ore.services.moderation — flags and moderator notes."""
from __future__ import annotations

import pytest

from ore.errors import FlagAlreadyExists, PermissionDenied
from ore.models.projects import FlagReason
from ore.permissions import ProjectRole, checker, global_permissions, role_permissions
from ore.services.action_log import LoggedActionType, list_actions
from ore.services.moderation import add_note, flag_project, list_flags, list_notes, set_flag_resolved

MODERATOR = checker(global_permissions(["moderator"]))
OWNER = checker(role_permissions(ProjectRole.owner.value))


class TestFlags:
    @pytest.mark.anyio
    async def test_flag_project(self, db_session, project, other_user):
        flag = await flag_project(
            db_session, project, user_id=other_user.id, reason=FlagReason.spam, comment="ads everywhere"
        )
        assert flag.user_name == other_user.name
        assert flag.reason == "spam"
        assert flag.is_resolved is False
        actions = await list_actions(db_session, context_id=project.id)
        assert LoggedActionType.project_flagged.value in [a.action for a in actions]

    @pytest.mark.anyio
    async def test_unknown_reporter_has_empty_name(self, db_session, project):
        flag = await flag_project(db_session, project, user_id="gone-user", reason=FlagReason.spam)
        assert flag.user_id == "gone-user"
        assert flag.user_name == ""

    @pytest.mark.anyio
    async def test_one_open_flag_per_user(self, db_session, project, other_user):
        await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.spam)
        with pytest.raises(FlagAlreadyExists):
            await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.other)

    @pytest.mark.anyio
    async def test_can_flag_again_after_resolution(self, db_session, project, other_user, moderator):
        flag = await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.spam)
        await set_flag_resolved(
            db_session, flag.flag_id, resolved=True, actor_id=moderator.id, has_permission=MODERATOR
        )
        again = await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.impersonation)
        assert again.flag_id != flag.flag_id

    @pytest.mark.anyio
    async def test_resolve_and_reopen(self, db_session, project, other_user, moderator):
        flag = await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.mal_intent)
        resolved = await set_flag_resolved(
            db_session, flag.flag_id, resolved=True, actor_id=moderator.id, has_permission=MODERATOR
        )
        assert resolved is not None
        assert resolved.is_resolved is True
        assert resolved.resolved_at is not None
        assert resolved.resolved_by_name == moderator.name

        reopened = await set_flag_resolved(
            db_session, flag.flag_id, resolved=False, actor_id=moderator.id, has_permission=MODERATOR
        )
        assert reopened is not None
        assert reopened.is_resolved is False
        assert reopened.resolved_by is None

    @pytest.mark.anyio
    async def test_resolve_requires_moderation(self, db_session, project, other_user, owner):
        flag = await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.spam)
        with pytest.raises(PermissionDenied):
            await set_flag_resolved(db_session, flag.flag_id, resolved=True, actor_id=owner.id, has_permission=OWNER)

    @pytest.mark.anyio
    async def test_resolve_unknown_flag(self, db_session, moderator):
        assert (
            await set_flag_resolved(db_session, "nope", resolved=True, actor_id=moderator.id, has_permission=MODERATOR)
            is None
        )

    @pytest.mark.anyio
    async def test_list_hides_resolved_by_default(self, db_session, project, other_user, moderator):
        first = await flag_project(db_session, project, user_id=other_user.id, reason=FlagReason.spam)
        second = await flag_project(db_session, project, user_id=moderator.id, reason=FlagReason.other)
        await set_flag_resolved(
            db_session, first.flag_id, resolved=True, actor_id=moderator.id, has_permission=MODERATOR
        )

        open_flags = await list_flags(db_session, project_id=project.id)
        assert [f.flag_id for f in open_flags.flags] == [second.flag_id]
        everything = await list_flags(db_session, include_resolved=True)
        assert {f.flag_id for f in everything.flags} == {first.flag_id, second.flag_id}


class TestNotes:
    @pytest.mark.anyio
    async def test_add_and_list(self, db_session, project, moderator):
        note = await add_note(db_session, project, user_id=moderator.id, message="Looks fine", has_permission=MODERATOR)
        assert note.user_name == moderator.name

        listing = await list_notes(db_session, project, has_permission=MODERATOR)
        assert [n.message for n in listing.notes] == ["Looks fine"]

    @pytest.mark.anyio
    async def test_owner_cannot_read_notes(self, db_session, project, owner):
        with pytest.raises(PermissionDenied):
            await list_notes(db_session, project, has_permission=OWNER)
        with pytest.raises(PermissionDenied):
            await add_note(db_session, project, user_id=owner.id, message="hi", has_permission=OWNER)
