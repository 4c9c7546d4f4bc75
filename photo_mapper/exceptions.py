"""
Custom exception hierarchy for the photo mapper.

Input errors (ValidationError and subclasses) are never retried; the caller
must fix the input. The remaining types describe run-level or per-item
failures of the sync pipeline.
"""
from typing import Optional


class PhotoMapperError(Exception):
    """Base exception for all photo mapper errors."""
    pass


class ConfigError(PhotoMapperError):
    """Raised when the configuration file is missing or malformed."""
    pass


class ValidationError(PhotoMapperError):
    """Raised when coordinates or query parameters are invalid."""
    pass


class CoordinateValidationError(ValidationError):
    """Raised when a latitude/longitude pair is missing, non-numeric or out of range."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidQuery(ValidationError):
    """Raised when query parameters are unknown or malformed. Names the offending field."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class UpstreamUnavailable(PhotoMapperError):
    """Raised when the source collaborator cannot be reached."""
    pass


class StoreUnavailable(PhotoMapperError):
    """Raised when the persistence layer is unreachable or its tables are missing."""
    pass


class PartialProcessingError(PhotoMapperError):
    """Wraps a failure of a single item during a batch; the run continues."""

    def __init__(self, item_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to process {item_id}: {cause}")
        self.item_id = item_id
        self.cause = cause


class SyncInProgress(PhotoMapperError):
    """Raised when another run holds an unexpired sync lease."""
    pass


class AuthenticationError(PhotoMapperError):
    """Raised when the shared access token does not match."""
    pass
