"""Error handling module for fleethub.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "CONTAINER_NOT_FOUND",
        "message": "Container not found"
    }
}

Usage:
    from fleethub.core.errors import ContainerNotFoundError, ContainerBusyError

    # Raise with default message
    raise ContainerNotFoundError()

    # Raise with custom message
    raise ContainerBusyError("Migration already in progress")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
    HOST_NOT_FOUND = "HOST_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_SLUG = "INVALID_SLUG"
    SLUG_CONFLICT = "SLUG_CONFLICT"
    INVALID_COMPONENT = "INVALID_COMPONENT"
    INVALID_MIGRATION = "INVALID_MIGRATION"
    INVALID_STATE = "INVALID_STATE"
    AGENT_UNAVAILABLE = "AGENT_UNAVAILABLE"
    CONTAINER_BUSY = "CONTAINER_BUSY"
    HOST_UNREACHABLE = "HOST_UNREACHABLE"
    HOST_IN_USE = "HOST_IN_USE"
    NO_ACTIVE_JOB = "NO_ACTIVE_JOB"
    HOST_AGENT_ERROR = "HOST_AGENT_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class FleetHubError(Exception):
    """Base exception for fleethub.

    All synchronous validation and operational errors inherit from this
    class so FastAPI can render them through one exception handler.
    Failures of background jobs are never raised to the caller; they are
    captured on the job record instead.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class UnauthorizedError(FleetHubError):
    """401 Unauthorized - Agent authentication failed."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class ValidationFailedError(FleetHubError):
    """422 Unprocessable Entity - Request failed validation."""

    def __init__(self, message: str = "Validation failed") -> None:
        super().__init__(ErrorCode.VALIDATION_FAILED, message, 422)


class ContainerNotFoundError(FleetHubError):
    """404 Not Found - Container not found."""

    def __init__(self, message: str = "Container not found") -> None:
        super().__init__(ErrorCode.CONTAINER_NOT_FOUND, message, 404)


class HostNotFoundError(FleetHubError):
    """404 Not Found - Host not found."""

    def __init__(self, message: str = "Host not found") -> None:
        super().__init__(ErrorCode.HOST_NOT_FOUND, message, 404)


class JobNotFoundError(FleetHubError):
    """404 Not Found - No current or recent job for the container."""

    def __init__(self, message: str = "No job found for container") -> None:
        super().__init__(ErrorCode.JOB_NOT_FOUND, message, 404)


class InvalidSlugError(FleetHubError):
    """422 Unprocessable Entity - Slug outside [a-z0-9-]{3,32}."""

    def __init__(
        self,
        message: str = "Slug must be 3-32 characters of lowercase letters, digits or hyphens",
    ) -> None:
        super().__init__(ErrorCode.INVALID_SLUG, message, 422)


class SlugConflictError(FleetHubError):
    """409 Conflict - Slug already used by another container."""

    def __init__(self, message: str = "Slug already in use") -> None:
        super().__init__(ErrorCode.SLUG_CONFLICT, message, 409)


class InvalidComponentError(FleetHubError):
    """422 Unprocessable Entity - Unknown service component."""

    def __init__(self, message: str = "Component must be one of: app, db, code_server") -> None:
        super().__init__(ErrorCode.INVALID_COMPONENT, message, 422)


class InvalidMigrationError(FleetHubError):
    """422 Unprocessable Entity - Migration request is not meaningful."""

    def __init__(self, message: str = "Source and target hosts are the same") -> None:
        super().__init__(ErrorCode.INVALID_MIGRATION, message, 422)


class InvalidStateError(FleetHubError):
    """409 Conflict - Operation not allowed in the container's current status."""

    def __init__(self, message: str = "Operation not allowed in current state") -> None:
        super().__init__(ErrorCode.INVALID_STATE, message, 409)


class AgentUnavailableError(FleetHubError):
    """409 Conflict - No live agent session to dispatch a command to."""

    def __init__(self, message: str = "Agent is not connected") -> None:
        super().__init__(ErrorCode.AGENT_UNAVAILABLE, message, 409)


class ContainerBusyError(FleetHubError):
    """409 Conflict - A migration or rename is already running."""

    def __init__(self, message: str = "Another operation is in progress") -> None:
        super().__init__(ErrorCode.CONTAINER_BUSY, message, 409)


class HostUnreachableError(FleetHubError):
    """409 Conflict - Host is not online."""

    def __init__(self, message: str = "Target host is not reachable") -> None:
        super().__init__(ErrorCode.HOST_UNREACHABLE, message, 409)


class HostInUseError(FleetHubError):
    """409 Conflict - Host still owns containers."""

    def __init__(self, message: str = "Host still has containers") -> None:
        super().__init__(ErrorCode.HOST_IN_USE, message, 409)


class NoActiveJobError(FleetHubError):
    """409 Conflict - Nothing to cancel."""

    def __init__(self, message: str = "No active migration") -> None:
        super().__init__(ErrorCode.NO_ACTIVE_JOB, message, 409)


class HostAgentError(FleetHubError):
    """502 Bad Gateway - Host agent call failed."""

    def __init__(self, message: str = "Host agent unavailable") -> None:
        super().__init__(ErrorCode.HOST_AGENT_ERROR, message, 502)
