"""Domain errors raised by services and mapped to HTTP responses in app.main."""

from fastapi import status


class VotingAppError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(VotingAppError):
    """Missing or malformed request data."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class InvalidState(VotingAppError):
    """The target exists but is in the wrong state for the operation."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current state"


class Unauthenticated(VotingAppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Access token required"


class Forbidden(VotingAppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(VotingAppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(VotingAppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"
