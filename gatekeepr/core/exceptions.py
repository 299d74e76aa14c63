"""Custom exception classes for Gatekeepr.

Every failure surfaced by the services is one of the kinds below. The API
layer renders them as ``{"detail": message}`` with the kind's status code.
"""

from fastapi import status


class GatekeeprError(Exception):
    """Base exception for Gatekeepr."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(GatekeeprError):
    """Raised when a credential is missing, malformed, invalid or expired."""
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(GatekeeprError):
    """Raised when an authenticated actor lacks a role, permission or level."""
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(GatekeeprError):
    """Raised when required input is missing or invalid."""
    status_code = status.HTTP_400_BAD_REQUEST


class ResourceConflictError(GatekeeprError):
    """Raised when a resource already exists or a transition lost a race."""
    status_code = status.HTTP_409_CONFLICT


class ResourceNotFoundError(GatekeeprError):
    """Raised when a requested resource is not found."""
    status_code = status.HTTP_404_NOT_FOUND


class StorageError(GatekeeprError):
    """Raised when a database statement or transaction fails."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
