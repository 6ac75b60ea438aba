"""
Exception hierarchy for the memory-augmented multimodal backend.

Each exception carries the HTTP status the API layer reports for it, so
request handlers can translate failures without inspecting messages.
"""

from enum import Enum
from typing import Optional


class UpstreamFailureKind(Enum):
    """Classification of a collaborator failure, decided where it is raised."""
    TOO_LARGE = "too_large"
    UNAVAILABLE = "unavailable"
    EMPTY = "empty"
    OTHER = "other"


class MemragError(Exception):
    """Base exception for all backend errors."""

    status_code: int = 500

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(self.message)


class ConfigError(MemragError):
    """Raised when required configuration or credentials are missing."""
    status_code = 500


class ValidationError(MemragError):
    """Raised when a required input field is missing or invalid."""
    status_code = 400


class UpstreamError(MemragError):
    """
    Raised when an external collaborator returns a non-success response.

    Carries the upstream status code and response body so callers can
    report them, plus a failure kind classified at the client boundary.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: str = "",
        kind: UpstreamFailureKind = UpstreamFailureKind.OTHER,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, cause)
        self.upstream_status = upstream_status
        self.body = body
        self.kind = kind

    @property
    def is_too_large(self) -> bool:
        return self.kind is UpstreamFailureKind.TOO_LARGE


class UploadError(UpstreamError):
    """Raised when the object store rejects an upload."""


class StoreError(MemragError):
    """Raised when the vector store rejects or fails an operation."""


class MemoryServiceError(MemragError):
    """Raised when embedding, storing, or querying a memory fails."""
