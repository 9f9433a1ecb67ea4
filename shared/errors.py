"""
Shared error handling for the Records Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for the Records Access Layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Malformed operation or filter."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class BackendError(AccessLayerException):
    """Error response or failure talking to the records backend."""

    def __init__(self, code: str, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(code, message, details)


class TransientBackendError(BackendError):
    """Network failure or 5xx response; safe to retry."""

    def __init__(self, message: str = "Transient backend error", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_BACKEND_ERROR", message, status_code, details)


class TerminalBackendError(BackendError):
    """4xx response other than 429; retrying will not help."""

    def __init__(self, message: str = "Terminal backend error", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("TERMINAL_BACKEND_ERROR", message, status_code, details)


class RateLimitError(BackendError):
    """Backend answered 429. Absorbed by the request scheduler."""

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, 429, details)


class QueueFullError(AccessLayerException):
    """A bounded scheduler lane cannot accept more operations."""

    def __init__(self, lane: str, limit: int):
        super().__init__(
            "QUEUE_FULL",
            f"Scheduler lane '{lane}' is full",
            {"lane": lane, "limit": limit}
        )


class CacheCorruptionError(AccessLayerException):
    """Cached payload failed its type-specific decode."""

    def __init__(self, cache_type: str, message: str = "Cached payload is corrupt",
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("cache_type", cache_type)
        super().__init__("CACHE_CORRUPTION", message, details)
