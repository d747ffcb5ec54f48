"""Domain exception types for Ore.

Services raise these; route handlers translate them into HTTP responses.
"""
from __future__ import annotations


class OreError(Exception):
    """Base exception for Ore domain errors."""


class ParseError(OreError):
    """The uploaded file is not a plugin archive Ore can read."""


class DuplicateVersion(OreError):
    """A version with the same name or the same file already exists."""


class TransactionFailure(OreError):
    """A multi-row write failed part way and was rolled back."""


class ProjectNotFound(OreError):
    """No project matches the given owner and slug (or id)."""


class RoleNotFound(OreError):
    """The role id does not exist or does not belong to the requesting party."""


class PermissionDenied(OreError):
    """The acting user lacks the permission the operation requires."""

    def __init__(self, permission: object, message: str | None = None) -> None:
        super().__init__(message or f"Missing permission: {getattr(permission, 'name', permission)}")
        self.permission = permission


class InvalidTransition(OreError):
    """The project cannot move from its current visibility to the requested one."""


class MissingComment(OreError):
    """The visibility transition requires a comment and none was given."""


class ChannelError(OreError):
    """A channel operation was rejected.

    ``key`` is a stable message key (``error.channel.last`` ...) that clients
    can localise.
    """

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(message or key)
        self.key = key


class ChannelNotFound(OreError):
    """No channel with the given name exists on the project."""


class UnknownColorId(OreError):
    """A stored color id does not map to any known color."""


class DuplicateInvite(OreError):
    """The user already has a role (pending or accepted) in this scope."""


class InvalidInviteStatus(OreError):
    """Invite status must be one of accept, unaccept, decline."""


class FlagAlreadyExists(OreError):
    """The user already has an unresolved flag on this project."""


class NoForumTopic(OreError):
    """The project has no forum topic to reply to yet."""


class LastVersion(OreError):
    """The version is the project's only one and cannot be deleted."""


class InvalidRole(OreError):
    """The role type is unknown for this scope or cannot be granted by invite."""


class ProjectExists(OreError):
    """The owner already has a project with this name."""


class UnsafePath(OreError):
    """A name would place a file outside the directory it belongs in."""


class InvalidProjectName(OreError):
    """The project name has characters other than letters, digits, spaces, ``.``, ``_`` and ``-``."""


class PageNotFound(OreError):
    """The project has no wiki page with this name."""


class InvalidPageName(OreError):
    """A page name must slugify to something non-empty and stay short."""
