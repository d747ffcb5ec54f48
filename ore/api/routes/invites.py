"""Invite responses.

A user answers project or organization invites addressed to them; an
organization manager can answer a project invite on the organization's
behalf.  ``status`` is one of ``accept``, ``unaccept`` or ``decline``.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ore.api.errors import to_http_exception
from ore.auth.dependencies import get_current_user
from ore.db import get_db
from ore.db.models import User
from ore.errors import OreError
from ore.models.projects import InviteStatusResponse
from ore.services.membership import (
    ORGANIZATION_DOSSIER,
    PROJECT_DOSSIER,
    RoleRow,
    set_invite_status_on_behalf,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _to_status_response(role_id: str, status: str, role: RoleRow | None) -> InviteStatusResponse:
    return InviteStatusResponse(
        role_id=role_id,
        status=status,
        is_accepted=role.is_accepted if role is not None else None,
    )


@router.post(
    "/invites/projects/{role_id}/{status}",
    response_model=InviteStatusResponse,
    operation_id="setProjectInviteStatus",
)
async def set_project_invite_status(
    role_id: str,
    status: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> InviteStatusResponse:
    try:
        role = await PROJECT_DOSSIER.set_invite_status(db, role_id, status, user.id)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    return _to_status_response(role_id, status, role)


@router.post(
    "/invites/projects/{role_id}/{status}/on-behalf/{organization}",
    response_model=InviteStatusResponse,
    operation_id="setProjectInviteStatusOnBehalf",
)
async def set_project_invite_status_on_behalf(
    role_id: str,
    status: str,
    organization: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> InviteStatusResponse:
    try:
        role = await set_invite_status_on_behalf(db, role_id, status, organization, user)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    logger.info("✅ %s answered invite %s for %s: %s", user.name, role_id, organization, status)
    return _to_status_response(role_id, status, role)


@router.post(
    "/invites/organizations/{role_id}/{status}",
    response_model=InviteStatusResponse,
    operation_id="setOrganizationInviteStatus",
)
async def set_organization_invite_status(
    role_id: str,
    status: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> InviteStatusResponse:
    try:
        role = await ORGANIZATION_DOSSIER.set_invite_status(db, role_id, status, user.id)
    except OreError as exc:
        raise to_http_exception(exc) from exc
    return _to_status_response(role_id, status, role)
