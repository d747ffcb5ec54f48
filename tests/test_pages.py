"""
Tests for ore.services.pages — project wiki pages.

Covers:
  1. Show, list and name rules
  2. Editor opening creates an empty page
  3. Save and delete, with permissions and action log entries
  4. Pages go with their project
"""
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from ore.db.models import LoggedAction
from ore.db.project_models import Page
from ore.errors import InvalidPageName, PageNotFound, PermissionDenied
from ore.permissions import Permission, ProjectRole, checker, role_permissions
from ore.services.action_log import LoggedActionType
from ore.services.pages import delete_page, get_page, list_pages, open_page_editor, save_page
from ore.services.visibility import remove_project

OWNER = checker(role_permissions(ProjectRole.owner.value))
EDITOR = checker(role_permissions(ProjectRole.editor.value))
SUPPORT = checker(role_permissions(ProjectRole.support.value))


class TestShow:
    @pytest.mark.anyio
    async def test_missing_page(self, db_session, project):
        with pytest.raises(PageNotFound):
            await get_page(db_session, project, "Home")

    @pytest.mark.anyio
    async def test_lookup_by_slug(self, db_session, project, owner):
        await save_page(db_session, project, "Getting  Started", "# Hi", actor_id=owner.id, has_permission=OWNER)
        page = await get_page(db_session, project, "Getting-Started")
        assert page.name == "Getting Started"
        assert page.slug == "Getting-Started"
        assert page.contents == "# Hi"

    @pytest.mark.anyio
    async def test_list_sorted_by_name(self, db_session, project, owner):
        for name in ("Setup", "Commands", "Home"):
            await save_page(db_session, project, name, name, actor_id=owner.id, has_permission=OWNER)
        assert [p.name for p in await list_pages(db_session, project)] == ["Commands", "Home", "Setup"]

    @pytest.mark.anyio
    @pytest.mark.parametrize("name", ["", "   ", "///", "x" * 26])
    async def test_invalid_names(self, db_session, project, name):
        with pytest.raises(InvalidPageName):
            await get_page(db_session, project, name)


class TestEditor:
    @pytest.mark.anyio
    async def test_opening_creates_empty_page(self, db_session, project):
        page = await open_page_editor(db_session, project, "Home", has_permission=EDITOR)
        assert page.contents == ""
        assert (await get_page(db_session, project, "Home")).page_id == page.page_id

    @pytest.mark.anyio
    async def test_opening_twice_keeps_one_page(self, db_session, project, owner):
        await save_page(db_session, project, "Home", "kept", actor_id=owner.id, has_permission=OWNER)
        page = await open_page_editor(db_session, project, "Home", has_permission=OWNER)
        assert page.contents == "kept"
        count = (await db_session.execute(select(func.count(Page.id)))).scalar_one()
        assert count == 1

    @pytest.mark.anyio
    async def test_requires_edit_pages(self, db_session, project):
        with pytest.raises(PermissionDenied) as info:
            await open_page_editor(db_session, project, "Home", has_permission=SUPPORT)
        assert info.value.permission == Permission.EDIT_PAGES


class TestSaveAndDelete:
    @pytest.mark.anyio
    async def test_save_replaces_contents_and_logs(self, db_session, project, owner):
        await save_page(db_session, project, "Home", "one", actor_id=owner.id, has_permission=OWNER)
        page = await save_page(db_session, project, "Home", "two", actor_id=owner.id, has_permission=EDITOR)
        assert page.contents == "two"

        entries = (
            await db_session.execute(
                select(LoggedAction).where(LoggedAction.action == LoggedActionType.project_page_edited.value)
            )
        ).scalars().all()
        assert {(e.old_state, e.new_state) for e in entries} == {("", "one"), ("one", "two")}

    @pytest.mark.anyio
    async def test_save_requires_edit_pages(self, db_session, project, other_user):
        with pytest.raises(PermissionDenied):
            await save_page(db_session, project, "Home", "x", actor_id=other_user.id, has_permission=SUPPORT)
        with pytest.raises(PageNotFound):
            await get_page(db_session, project, "Home")

    @pytest.mark.anyio
    async def test_delete(self, db_session, project, owner):
        await save_page(db_session, project, "Home", "bye", actor_id=owner.id, has_permission=OWNER)
        await delete_page(db_session, project, "Home", actor_id=owner.id, has_permission=OWNER)
        with pytest.raises(PageNotFound):
            await get_page(db_session, project, "Home")
        with pytest.raises(PageNotFound):
            await delete_page(db_session, project, "Home", actor_id=owner.id, has_permission=OWNER)

    @pytest.mark.anyio
    async def test_delete_requires_edit_pages(self, db_session, project, owner):
        await save_page(db_session, project, "Home", "stays", actor_id=owner.id, has_permission=OWNER)
        with pytest.raises(PermissionDenied):
            await delete_page(db_session, project, "Home", actor_id=owner.id, has_permission=SUPPORT)
        assert (await get_page(db_session, project, "Home")).contents == "stays"


class TestProjectRemoval:
    @pytest.mark.anyio
    async def test_pages_removed_with_project(self, db_session, project, owner, files):
        await save_page(db_session, project, "Home", "gone", actor_id=owner.id, has_permission=OWNER)
        await remove_project(db_session, project, actor_id=owner.id, files=files)
        count = (await db_session.execute(select(func.count(Page.id)))).scalar_one()
        assert count == 0
