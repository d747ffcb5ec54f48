"""Translate domain errors into HTTP responses.

Route handlers catch ``OreError`` and re-raise ``to_http_exception(exc)``.
"""
from __future__ import annotations

from fastapi import HTTPException, status

from ore import errors

_STATUS: tuple[tuple[type[errors.OreError], int], ...] = (
    (errors.ParseError, status.HTTP_400_BAD_REQUEST),
    (errors.ChannelError, status.HTTP_400_BAD_REQUEST),
    (errors.InvalidTransition, status.HTTP_400_BAD_REQUEST),
    (errors.MissingComment, status.HTTP_400_BAD_REQUEST),
    (errors.InvalidInviteStatus, status.HTTP_400_BAD_REQUEST),
    (errors.InvalidRole, status.HTTP_400_BAD_REQUEST),
    (errors.LastVersion, status.HTTP_400_BAD_REQUEST),
    (errors.UnknownColorId, status.HTTP_400_BAD_REQUEST),
    (errors.NoForumTopic, status.HTTP_400_BAD_REQUEST),
    (errors.UnsafePath, status.HTTP_400_BAD_REQUEST),
    (errors.InvalidProjectName, status.HTTP_400_BAD_REQUEST),
    (errors.InvalidPageName, status.HTTP_400_BAD_REQUEST),
    (errors.DuplicateVersion, status.HTTP_409_CONFLICT),
    (errors.DuplicateInvite, status.HTTP_409_CONFLICT),
    (errors.FlagAlreadyExists, status.HTTP_409_CONFLICT),
    (errors.ProjectExists, status.HTTP_409_CONFLICT),
    (errors.RoleNotFound, status.HTTP_404_NOT_FOUND),
    (errors.ProjectNotFound, status.HTTP_404_NOT_FOUND),
    (errors.ChannelNotFound, status.HTTP_404_NOT_FOUND),
    (errors.PageNotFound, status.HTTP_404_NOT_FOUND),
    (errors.PermissionDenied, status.HTTP_403_FORBIDDEN),
    (errors.TransactionFailure, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(exc: errors.OreError) -> HTTPException:
    """Return the ``HTTPException`` matching *exc*'s type.

    ``ChannelError`` responses carry the message key in ``detail`` so clients
    can localise it.
    """
    for error_type, code in _STATUS:
        if isinstance(exc, error_type):
            if isinstance(exc, errors.ChannelError):
                return HTTPException(status_code=code, detail={"key": exc.key, "message": str(exc)})
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
