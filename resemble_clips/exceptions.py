"""
Defines custom exceptions used throughout the application.

These exceptions allow for more specific error handling than built-in exceptions.
"""

from typing import Optional


class ApiError(Exception):
    """Raised by the remote client when a call fails or returns an unusable response."""
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        message = super().__str__()
        return f"{message} (HTTP {self.status})" if self.status is not None else message


class ClipRequestError(Exception):
    """Base class for errors that end a clip request in the Failed state."""
    kind = "Error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}" if self.detail else self.kind


class CreateOrUpdateError(ClipRequestError):
    kind = "CreateOrUpdateFailed"


class StatusCheckError(ClipRequestError):
    kind = "StatusCheckFailed"


class RequestTimeoutError(ClipRequestError):
    kind = "Timeout"


class DownloadError(ClipRequestError):
    kind = "DownloadFailed"


class DeletionError(ClipRequestError):
    """The artifact was written, but the remote clip could not be deleted."""
    kind = "DeletionFailed"


class RequestCancelledError(ClipRequestError):
    kind = "Cancelled"


class PersistenceError(Exception):
    """Custom exception for job store persistence failures. Never fatal."""
    pass


class ConfigurationError(Exception):
    """Custom exception for fatal setup failures, e.g. no event loop to schedule on."""
    pass


class InvalidTransitionError(Exception):
    """Raised when a job is asked to move along an edge its state machine does not have."""
    pass
