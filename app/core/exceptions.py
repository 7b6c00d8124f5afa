"""
Error taxonomy for the access-control service.

Service code raises these; a single exception handler in ``app.main`` turns
them into JSON responses with the matching status code.
"""
from fastapi import status


class AccessControlError(Exception):
    """Base error carrying the HTTP status it maps to."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(AccessControlError):
    """No actor on the request, or the credentials could not be verified."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Unauthorized(AccessControlError):
    """Authenticated actor lacks the permission for a resource it can see."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFound(AccessControlError):
    """
    Entity is absent, or hidden from the actor by organization scoping.

    Both cases produce the same message so callers cannot tell them apart.
    """
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(AccessControlError):
    """Duplicate role name, or a delete blocked by assigned users."""
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class ValidationError(AccessControlError):
    """Malformed input or reference to an unknown permission/role."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"
