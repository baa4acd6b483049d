"""
Domain exceptions raised by the AccessHub services.

Each carries an HTTP status and a stable error code so the API layer can
render them uniformly; the services themselves never import FastAPI.
"""
from typing import Optional


class AccessHubError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(AccessHubError):
    """Malformed or missing input, or an invalid target reference."""

    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_detail = "Invalid request"


class AuthenticationError(AccessHubError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    error_code = "AUTH_ERROR"
    default_detail = "Authentication required"


class AuthorizationError(AccessHubError):
    """
    Actor lacks the role, capability or approver eligibility for an action.

    The message is always generic so callers cannot enumerate privileges.
    """

    status_code = 403
    error_code = "AUTHORIZATION_ERROR"
    default_detail = "Not permitted"

    def __init__(self, reason: Optional[str] = None):
        # reason is kept for server-side logs only
        self.reason = reason
        super().__init__(self.default_detail)


class NotFoundError(AccessHubError):
    """Unknown id."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ConflictError(AccessHubError):
    """Duplicate pending request, or an entity that is still in use."""

    status_code = 409
    error_code = "CONFLICT"
    default_detail = "Conflict"


class InvalidStateError(AccessHubError):
    """Illegal state transition; clients should refresh and retry."""

    status_code = 409
    error_code = "INVALID_STATE"
    default_detail = "Request is no longer in a state that allows this action"
