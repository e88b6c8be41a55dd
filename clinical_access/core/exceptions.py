"""Error taxonomy shared by the policy engine, workflow and API layer.

Each error carries the HTTP status class it maps to, so the API layer
translates them with a single exception handler.
"""

from fastapi import status


class AccessControlError(Exception):
    """Base class for all domain errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AccessControlError):
    """Malformed or missing input."""

    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(AccessControlError):
    """Entity does not exist."""

    http_status = status.HTTP_404_NOT_FOUND


class ForbiddenError(AccessControlError):
    """Entity exists but the caller does not own it."""

    http_status = status.HTTP_403_FORBIDDEN


class ConflictError(AccessControlError):
    """Current state of the entity disallows the action."""

    http_status = status.HTTP_409_CONFLICT


class InternalError(AccessControlError):
    """Store or cache failure not attributable to caller input."""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamError(AccessControlError):
    """A peripheral collaborator (document source) failed."""

    http_status = status.HTTP_502_BAD_GATEWAY
