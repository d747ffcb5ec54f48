"""Membership dossiers — invites and roles for projects and organizations.

Projects and organizations manage members the same way: a user is invited to
a role (an unaccepted role row), accepts or declines, and can later be
removed.  ``MembershipDossier`` implements this once, parameterised by the
role table and its scope column.  Use the two module-level instances,
``PROJECT_DOSSIER`` and ``ORGANIZATION_DOSSIER``.

Permission resolution lives here too, since it is a fold over the role rows:
a user's permissions on a project are their global-role permissions, plus
their accepted project roles, plus their accepted organization roles when an
organization owns the project.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ore.db.models import Organization, OrganizationUserRole, User
from ore.db.project_models import Project, ProjectUserRole
from ore.errors import DuplicateInvite, InvalidInviteStatus, InvalidRole, PermissionDenied, RoleNotFound
from ore.models.projects import MemberResponse
from ore.permissions import (
    OWNER_ROLES,
    OrganizationRole,
    Permission,
    ProjectRole,
    global_permissions,
    role_permissions,
    role_rank,
)
from ore.services.action_log import LoggedActionType, log_action

logger = logging.getLogger(__name__)


class InviteStatus(str, enum.Enum):
    accept = "accept"
    unaccept = "unaccept"
    decline = "decline"


def parse_invite_status(value: str) -> InviteStatus:
    try:
        return InviteStatus(value)
    except ValueError:
        raise InvalidInviteStatus(f"Unknown invite status '{value}'") from None


RoleRow = ProjectUserRole | OrganizationUserRole


@dataclass(frozen=True)
class MembershipDossier:
    """Membership operations over one role table.

    ``scope_attr`` names the column holding the project or organization id.
    """

    role_model: Any
    scope_attr: str
    role_enum: type[ProjectRole] | type[OrganizationRole]
    removed_action: LoggedActionType | None = None

    @property
    def _scope_column(self) -> Any:
        return getattr(self.role_model, self.scope_attr)

    def _validate_role(self, role: str) -> str:
        try:
            role_type = self.role_enum(role).value
        except ValueError:
            raise InvalidRole(f"'{role}' is not a valid role here") from None
        if role_type in OWNER_ROLES:
            raise InvalidRole("Ownership cannot be granted by invite")
        return role_type

    async def invite(self, session: AsyncSession, scope_id: str, user_id: str, role: str) -> MemberResponse:
        """Create an unaccepted role for *user_id*.

        Raises:
            InvalidRole: If *role* is not an invitable role of this scope.
            DuplicateInvite: If the user already has a role in the scope.
        """
        role_type = self._validate_role(role)
        row = self.role_model(user_id=user_id, role_type=role_type, is_accepted=False)
        setattr(row, self.scope_attr, scope_id)
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError as exc:
            raise DuplicateInvite(f"User {user_id} already has a role in {scope_id}") from exc

        user_name = (await session.execute(select(User.name).where(User.id == user_id))).scalar_one_or_none()
        logger.info("✅ Invited %s to %s as %s", user_id, scope_id, role_type)
        return _to_member_response(row, user_name or "")

    async def get_role(self, session: AsyncSession, role_id: str) -> RoleRow | None:
        return await session.get(self.role_model, role_id)

    async def set_invite_status(
        self,
        session: AsyncSession,
        role_id: str,
        status: InviteStatus | str,
        user_id: str,
    ) -> RoleRow | None:
        """Accept, unaccept or decline an invite addressed to *user_id*.

        Returns the updated role, or ``None`` when it was declined (deleted).

        Raises:
            InvalidInviteStatus: If *status* is not a known status.
            RoleNotFound: If the role does not exist or is not *user_id*'s.
        """
        status = status if isinstance(status, InviteStatus) else parse_invite_status(status)
        role = await self.get_role(session, role_id)
        if role is None or role.user_id != user_id:
            raise RoleNotFound(f"Role {role_id} not found")

        if status is InviteStatus.decline:
            await session.delete(role)
            await session.flush()
            logger.info("✅ %s declined role %s", user_id, role_id)
            return None

        role.is_accepted = status is InviteStatus.accept
        await session.flush()
        logger.info("✅ %s set role %s to %s", user_id, role_id, status.value)
        return role

    async def remove_role(self, session: AsyncSession, scope_id: str, role_id: str) -> bool:
        """Delete one role row of the scope.  Owner roles are kept."""
        role = await self.get_role(session, role_id)
        if role is None or getattr(role, self.scope_attr) != scope_id:
            return False
        if role.role_type in OWNER_ROLES:
            raise PermissionDenied(Permission.MANAGE_PROJECT_MEMBERS, "The owner cannot be removed")
        await session.delete(role)
        await session.flush()
        return True

    async def remove_member(
        self,
        session: AsyncSession,
        scope_id: str,
        user_id: str,
        *,
        actor_id: str | None = None,
    ) -> int:
        """Delete every role *user_id* holds in the scope; return how many.

        Raises:
            PermissionDenied: If the user is the scope's owner.
        """
        stmt = select(self.role_model).where(self._scope_column == scope_id, self.role_model.user_id == user_id)
        roles = list((await session.execute(stmt)).scalars().all())
        if any(r.role_type in OWNER_ROLES for r in roles):
            raise PermissionDenied(Permission.MANAGE_PROJECT_MEMBERS, "The owner cannot be removed")
        if not roles:
            return 0

        await session.execute(
            delete(self.role_model).where(self._scope_column == scope_id, self.role_model.user_id == user_id)
        )
        if self.removed_action is not None:
            user_name = (await session.execute(select(User.name).where(User.id == user_id))).scalar_one_or_none()
            await log_action(
                session,
                user_id=actor_id,
                action=self.removed_action,
                context_id=scope_id,
                new_state=f"Removed {user_name or user_id}",
                old_state="",
            )
        logger.info("✅ Removed %s from %s (%d roles)", user_id, scope_id, len(roles))
        return len(roles)

    async def members(self, session: AsyncSession, scope_id: str) -> list[MemberResponse]:
        """Return all roles of the scope with user names, highest rank first."""
        stmt = (
            select(self.role_model, User.name)
            .join(User, User.id == self.role_model.user_id)
            .where(self._scope_column == scope_id)
        )
        rows = (await session.execute(stmt)).all()
        rows.sort(key=lambda r: (-role_rank(r[0].role_type), r[1].lower()))
        return [_to_member_response(role, name) for role, name in rows]

    async def accepted_roles(self, session: AsyncSession, scope_id: str, user_id: str) -> list[str]:
        stmt = select(self.role_model.role_type).where(
            self._scope_column == scope_id,
            self.role_model.user_id == user_id,
            self.role_model.is_accepted.is_(True),
        )
        return list((await session.execute(stmt)).scalars().all())


def _to_member_response(role: RoleRow, user_name: str) -> MemberResponse:
    return MemberResponse(
        role_id=role.id,
        user_id=role.user_id,
        user_name=user_name,
        role_type=role.role_type,
        is_accepted=role.is_accepted,
    )


PROJECT_DOSSIER = MembershipDossier(
    role_model=ProjectUserRole,
    scope_attr="project_id",
    role_enum=ProjectRole,
    removed_action=LoggedActionType.project_member_removed,
)

ORGANIZATION_DOSSIER = MembershipDossier(
    role_model=OrganizationUserRole,
    scope_attr="organization_id",
    role_enum=OrganizationRole,
)


# ---------------------------------------------------------------------------
# Permission resolution
# ---------------------------------------------------------------------------


async def get_organization(session: AsyncSession, name: str) -> Organization | None:
    stmt = select(Organization).where(Organization.name == name)
    return (await session.execute(stmt)).scalar_one_or_none()


async def organization_for_project(session: AsyncSession, project: Project) -> Organization | None:
    """Return the organization whose backing account owns *project*, if any."""
    stmt = select(Organization).where(Organization.user_id == project.owner_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def organization_permissions(session: AsyncSession, organization: Organization, user: User | None) -> Permission:
    if user is None:
        return Permission.NONE
    perms = global_permissions(list(user.global_roles or []))
    for role_type in await ORGANIZATION_DOSSIER.accepted_roles(session, organization.id, user.id):
        perms |= role_permissions(role_type)
    return perms


async def project_permissions(session: AsyncSession, project: Project, user: User | None) -> Permission:
    """Union of *user*'s global, project and owning-organization permissions."""
    if user is None:
        return Permission.NONE
    perms = global_permissions(list(user.global_roles or []))
    for role_type in await PROJECT_DOSSIER.accepted_roles(session, project.id, user.id):
        perms |= role_permissions(role_type)
    organization = await organization_for_project(session, project)
    if organization is not None:
        for role_type in await ORGANIZATION_DOSSIER.accepted_roles(session, organization.id, user.id):
            perms |= role_permissions(role_type)
    return perms


async def set_invite_status_on_behalf(
    session: AsyncSession,
    role_id: str,
    status: InviteStatus | str,
    organization_name: str,
    actor: User,
    *,
    dossier: MembershipDossier = PROJECT_DOSSIER,
) -> RoleRow | None:
    """Answer an invite addressed to an organization, acting for it.

    The role must belong to the organization's backing account and *actor*
    must hold ``MANAGE_PROJECT_MEMBERS`` in the organization.

    Raises:
        InvalidInviteStatus: If *status* is not a known status.
        RoleNotFound: If any of the above does not hold.
    """
    status = status if isinstance(status, InviteStatus) else parse_invite_status(status)
    organization = await get_organization(session, organization_name)
    if organization is None:
        raise RoleNotFound(f"Organization '{organization_name}' not found")
    perms = await organization_permissions(session, organization, actor)
    if not perms & Permission.MANAGE_PROJECT_MEMBERS:
        raise RoleNotFound(f"Role {role_id} not found")
    return await dossier.set_invite_status(session, role_id, status, organization.user_id)
