"""
FastAPI Authentication Dependencies

``require_valid_token`` validates the bearer token; ``get_current_user`` and
``get_optional_user`` resolve it to a ``User`` row.  When the fake user is
enabled (debug only) requests without a token act as that user, whose row
is created on first use.
"""
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ore.auth.tokens import AccessCodeError, TokenClaims, validate_access_code
from ore.config import FakeUser, settings
from ore.db import get_db
from ore.db.models import User

logger = logging.getLogger(__name__)

# auto_error=False so missing tokens get our own 401 (or the fake user).
security = HTTPBearer(auto_error=False)


def get_fake_user() -> FakeUser:
    """Dependency returning the configured fake user (overridable in tests)."""
    return settings.fake_user()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def optional_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims | None:
    """Validate the bearer token if one was sent; ``None`` when absent.

    Raises:
        HTTPException 401: If a token was sent but is invalid or expired
    """
    if credentials is None:
        return None
    try:
        return validate_access_code(credentials.credentials)
    except AccessCodeError as e:
        logger.warning("Invalid token: %s", e)
        raise _unauthorized("Invalid or expired access token.")


async def require_valid_token(
    claims: TokenClaims | None = Depends(optional_token),
) -> TokenClaims:
    """
    FastAPI dependency that requires a valid access token.

    Raises:
        HTTPException 401: If the token is missing, invalid or expired
    """
    if claims is None:
        logger.warning("Access attempt without token")
        raise _unauthorized("Access token required.")
    return claims


async def _fake_user_row(db: AsyncSession, fake: FakeUser) -> User:
    user = await db.get(User, fake.id)
    if user is None:
        user = User(id=fake.id, name=fake.name, full_name=fake.full_name, email=fake.email, global_roles=["admin"])
        db.add(user)
        await db.flush()
        logger.warning("⚠️ Created fake user %s (development only)", fake.name)
    return user


async def get_optional_user(
    claims: TokenClaims | None = Depends(optional_token),
    db: AsyncSession = Depends(get_db),
    fake: FakeUser = Depends(get_fake_user),
) -> User | None:
    """Resolve the acting user, or ``None`` for anonymous requests."""
    if claims is None:
        if fake.enabled:
            return await _fake_user_row(db, fake)
        return None
    user = await db.get(User, claims["sub"])
    if user is None:
        logger.warning("Token for unknown user %s", claims["sub"])
        raise _unauthorized("Unknown user.")
    return user


async def get_current_user(
    user: User | None = Depends(get_optional_user),
) -> User:
    """Resolve the acting user; 401 for anonymous requests."""
    if user is None:
        logger.warning("Access attempt without token")
        raise _unauthorized("Access token required.")
    return user
