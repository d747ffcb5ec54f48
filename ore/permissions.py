"""Permissions and role types.

A user's effective permissions in a scope are the union of the permissions of
every role they hold there: global roles (stored on the user), accepted
project roles, and accepted organization roles when the project belongs to
an organization.

Role hierarchy within a scope: owner > admin > developer > editor > support.
"""
from __future__ import annotations

import enum
from collections.abc import Callable

from ore.errors import PermissionDenied


class Permission(enum.IntFlag):
    """Bit flags for everything that can be gated."""

    NONE = 0
    EDIT_PROJECT_SETTINGS = enum.auto()
    MANAGE_PROJECT_MEMBERS = enum.auto()
    EDIT_CHANNELS = enum.auto()
    CREATE_VERSION = enum.auto()
    DELETE_VERSION = enum.auto()
    DELETE_PROJECT = enum.auto()
    HARD_DELETE_PROJECT = enum.auto()
    REVIEWER = enum.auto()
    MOD_NOTES_AND_FLAGS = enum.auto()
    POST_AS_ORGANIZATION = enum.auto()
    MANAGE_ORGANIZATION_MEMBERS = enum.auto()
    EDIT_ORGANIZATION_SETTINGS = enum.auto()
    VIEW_HIDDEN = enum.auto()
    CREATE_PROJECT = enum.auto()
    EDIT_PAGES = enum.auto()


# Predicate handed to services that need to gate an operation.
PermissionCheck = Callable[[Permission], bool]


_PROJECT_MEMBER = Permission.CREATE_VERSION
_PROJECT_EDITOR = _PROJECT_MEMBER | Permission.EDIT_CHANNELS | Permission.EDIT_PAGES
_PROJECT_DEVELOPER = _PROJECT_EDITOR | Permission.DELETE_VERSION
_PROJECT_ADMIN = (
    _PROJECT_DEVELOPER
    | Permission.EDIT_PROJECT_SETTINGS
    | Permission.MANAGE_PROJECT_MEMBERS
)
_PROJECT_OWNER = _PROJECT_ADMIN | Permission.DELETE_PROJECT


class ProjectRole(str, enum.Enum):
    """Roles a user can hold on a project."""

    owner = "project_owner"
    admin = "project_admin"
    developer = "project_developer"
    editor = "project_editor"
    support = "project_support"


_PROJECT_ROLE_PERMISSIONS: dict[ProjectRole, Permission] = {
    ProjectRole.owner: _PROJECT_OWNER,
    ProjectRole.admin: _PROJECT_ADMIN,
    ProjectRole.developer: _PROJECT_DEVELOPER,
    ProjectRole.editor: _PROJECT_EDITOR,
    ProjectRole.support: Permission.NONE,
}


class OrganizationRole(str, enum.Enum):
    """Roles a user can hold in an organization."""

    owner = "organization_owner"
    admin = "organization_admin"
    developer = "organization_developer"
    editor = "organization_editor"
    support = "organization_support"
    member = "organization_member"


# Organization roles also apply to every project the organization owns.
_ORGANIZATION_ROLE_PERMISSIONS: dict[OrganizationRole, Permission] = {
    OrganizationRole.owner: _PROJECT_OWNER
    | Permission.POST_AS_ORGANIZATION
    | Permission.CREATE_PROJECT
    | Permission.MANAGE_ORGANIZATION_MEMBERS
    | Permission.EDIT_ORGANIZATION_SETTINGS,
    OrganizationRole.admin: _PROJECT_ADMIN
    | Permission.POST_AS_ORGANIZATION
    | Permission.CREATE_PROJECT
    | Permission.MANAGE_ORGANIZATION_MEMBERS
    | Permission.EDIT_ORGANIZATION_SETTINGS,
    OrganizationRole.developer: _PROJECT_DEVELOPER
    | Permission.POST_AS_ORGANIZATION
    | Permission.CREATE_PROJECT,
    OrganizationRole.editor: _PROJECT_EDITOR,
    OrganizationRole.support: Permission.NONE,
    OrganizationRole.member: Permission.NONE,
}


_ALL_PERMISSIONS = Permission.NONE
for _perm in Permission:
    _ALL_PERMISSIONS |= _perm


class GlobalRole(str, enum.Enum):
    """Site-wide staff roles stored on the user row."""

    admin = "admin"
    moderator = "moderator"
    reviewer = "reviewer"


_GLOBAL_ROLE_PERMISSIONS: dict[GlobalRole, Permission] = {
    GlobalRole.admin: _ALL_PERMISSIONS,
    GlobalRole.moderator: Permission.REVIEWER
    | Permission.MOD_NOTES_AND_FLAGS
    | Permission.VIEW_HIDDEN
    | Permission.DELETE_PROJECT,
    GlobalRole.reviewer: Permission.REVIEWER | Permission.VIEW_HIDDEN,
}


# Rank for ordering member lists: higher is more privileged.  Project and
# organization roles share a scale.
_ROLE_RANK: dict[str, int] = {
    ProjectRole.support.value: 1,
    ProjectRole.editor.value: 2,
    ProjectRole.developer.value: 3,
    ProjectRole.admin.value: 4,
    ProjectRole.owner.value: 5,
    OrganizationRole.member.value: 0,
    OrganizationRole.support.value: 1,
    OrganizationRole.editor.value: 2,
    OrganizationRole.developer.value: 3,
    OrganizationRole.admin.value: 4,
    OrganizationRole.owner.value: 5,
}


OWNER_ROLES: frozenset[str] = frozenset(
    {ProjectRole.owner.value, OrganizationRole.owner.value}
)


def role_rank(role_type: str) -> int:
    """Return the rank of *role_type*; unknown roles rank below everything."""
    return _ROLE_RANK.get(role_type, -1)


def role_permissions(role_type: str) -> Permission:
    """Return the permissions granted by a project or organization role name."""
    try:
        return _PROJECT_ROLE_PERMISSIONS[ProjectRole(role_type)]
    except ValueError:
        pass
    try:
        return _ORGANIZATION_ROLE_PERMISSIONS[OrganizationRole(role_type)]
    except ValueError:
        return Permission.NONE


def global_permissions(global_roles: list[str]) -> Permission:
    """Union of the permissions of every known global role in *global_roles*."""
    perms = Permission.NONE
    for name in global_roles:
        try:
            perms |= _GLOBAL_ROLE_PERMISSIONS[GlobalRole(name)]
        except ValueError:
            continue
    return perms


def checker(granted: Permission) -> PermissionCheck:
    """Build a predicate answering "is *required* fully contained in *granted*?"."""

    def _has(required: Permission) -> bool:
        return (granted & required) == required

    return _has


def require(has_permission: PermissionCheck, permission: Permission) -> None:
    """Raise ``PermissionDenied`` unless *has_permission* grants *permission*."""
    if not has_permission(permission):
        raise PermissionDenied(permission)
