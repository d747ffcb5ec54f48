"""
Access Token Generation and Validation

Signed JWT bearer tokens.  ``sub`` carries the Ore user id; tokens are
self-contained and not stored.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from typing_extensions import Required, TypedDict

from ore.config import settings


class AccessCodeError(Exception):
    """Raised when access token validation fails."""
    pass


class TokenClaims(TypedDict, total=False):
    """Decoded JWT payload returned by validate_access_code.

    ``type``, ``iat``, ``exp`` and ``sub`` are always present.
    """

    type: Required[str]
    iat: Required[int]
    exp: Required[int]
    sub: Required[str]


def _get_secret() -> str:
    """Get the token signing secret, raising if not configured."""
    if not settings.access_token_secret:
        raise AccessCodeError(
            "ORE_ACCESS_TOKEN_SECRET not configured. "
            "Generate one with: openssl rand -hex 32"
        )
    return settings.access_token_secret


def create_access_token(
    user_id: str,
    expires_hours: float | None = None,
    expires_days: int | None = None,
) -> str:
    """
    Generate a signed access token for *user_id*.

    Args:
        user_id: Ore user id, stored as ``sub``
        expires_hours: Validity in hours
        expires_days: Validity in days

    Returns:
        Signed JWT token string

    Raises:
        AccessCodeError: If no duration is given or the secret is not configured
    """
    secret = _get_secret()

    total_hours: float = 0.0
    if expires_hours:
        total_hours += expires_hours
    if expires_days:
        total_hours += expires_days * 24
    if total_hours <= 0:
        raise AccessCodeError("Must specify expires_hours or expires_days")

    now = datetime.now(timezone.utc)
    payload = {
        "type": "access",
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=total_hours)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.access_token_algorithm)


def validate_access_code(token: str) -> TokenClaims:
    """
    Validate an access token and return its claims.

    Raises:
        AccessCodeError: If the token is invalid, expired, or malformed
    """
    secret = _get_secret()

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.access_token_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AccessCodeError("Access token has expired")
    except jwt.InvalidTokenError as e:
        raise AccessCodeError(f"Invalid access token: {e}")

    # jwt.decode() returns dict[str, Any]; narrow each claim explicitly.
    raw_type = payload.get("type")
    if raw_type != "access":
        raise AccessCodeError("Invalid token type")

    raw_iat = payload.get("iat", 0)
    raw_exp = payload.get("exp", 0)
    if not isinstance(raw_iat, int) or not isinstance(raw_exp, int):
        raise AccessCodeError("Malformed token: iat/exp must be integers")

    raw_sub = payload.get("sub")
    if not isinstance(raw_sub, str) or not raw_sub:
        raise AccessCodeError("Malformed token: sub must be a non-empty string")

    return TokenClaims(type=raw_type, iat=raw_iat, exp=raw_exp, sub=raw_sub)
