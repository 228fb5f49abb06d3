# src/review_stream/errors.py
"""
Exception hierarchy for review-stream.
"""
from enum import Enum


class ReviewStreamError(Exception):
    """Base exception for review-stream errors."""
    pass


class ConfigurationError(ReviewStreamError):
    """Raised for configuration errors."""
    pass


class APIError(ReviewStreamError):
    """Raised when the analysis backend answers with a non-OK status."""
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class TransportError(ReviewStreamError):
    """Raised when the request could not be sent or the connection failed."""
    pass


class StreamInterruptedError(TransportError):
    """Raised when reading the response stream fails mid-way."""
    pass


class UploadErrorKind(str, Enum):
    """Failure kinds reported by the upload client."""
    INVALID_TYPE = "invalid_type"
    OVERSIZE = "oversize"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"


class UploadError(ReviewStreamError):
    """Raised when a PDF upload fails."""
    def __init__(self, kind: UploadErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


class JSONRepairError(ValueError):
    """Raised when every repair stage failed to produce a JSON value."""
    pass
