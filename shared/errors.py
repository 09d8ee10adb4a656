"""
Shared error handling for the RBAC decision engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for RBAC components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(AccessLayerException):
    """Structural configuration errors. Fatal at load, rejected on reload."""

    def __init__(self, message: str = "Invalid RBAC configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class UnsupportedFormatError(ConfigurationError):
    """Configuration bytes are in a format the loader cannot decode."""

    def __init__(self, fmt: str):
        super().__init__(
            f"unsupported config file format: {fmt} (supported: .json, .yaml, .yml)",
            {"format": fmt}
        )


class PatternSyntaxError(ConfigurationError):
    """Malformed parameterized template or regular expression."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"{reason}: {pattern}", {"pattern": pattern})


class ConfigFetchError(AccessLayerException):
    """A hot-reload byte source could not deliver configuration."""

    def __init__(self, source: str, message: str = "Failed to fetch configuration"):
        super().__init__("CONFIG_FETCH_ERROR", f"{source}: {message}", {"source": source})


class ClaimExtractionError(AccessLayerException):
    """Base class for claim path navigation failures."""

    code = "CLAIM_EXTRACTION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(self.code, message, details)


class EmptyClaimPathError(ClaimExtractionError):
    """The configured claim path is empty."""

    def __init__(self):
        super().__init__("empty claim path")


class ClaimPathNotFoundError(ClaimExtractionError):
    """A key or path segment is absent from the claims."""

    def __init__(self, segment: str):
        self.segment = segment
        super().__init__(f"claim path not found: {segment}", {"segment": segment})


class NonIndexableValueError(ClaimExtractionError):
    """A value cannot be navigated further (not a map, or not a sequence)."""

    def __init__(self, segment: str, expected: str):
        self.segment = segment
        super().__init__(
            f"claim value is not {expected}: {segment}",
            {"segment": segment, "expected": expected}
        )


class ArrayIndexOutOfBoundsError(ClaimExtractionError):
    """Bracketed index falls outside the claim sequence."""

    def __init__(self, index: int, length: int):
        self.index = index
        self.length = length
        super().__init__(
            f"array index out of bounds: {index} (length: {length})",
            {"index": index, "length": length}
        )


class InvalidIndexSyntaxError(ClaimExtractionError):
    """Bracket notation or the index inside it is malformed."""

    def __init__(self, path: str):
        super().__init__(f"invalid array index syntax: {path}", {"path": path})


class RoleNotFoundError(AccessLayerException):
    """The caller's role could not be determined."""

    def __init__(self, message: str = "unauthorized: role not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("ROLE_NOT_FOUND", message, details)


class AccessDeniedError(AccessLayerException):
    """The caller's role lacks the permission the endpoint requires."""

    def __init__(self, message: str = "forbidden: access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCESS_DENIED", message, details)


GENERIC_AUTHORIZATION_ERROR = "authorization error"


def sanitize_error(error: Optional[BaseException]) -> Optional[str]:
    """Return a message that is safe to surface outside the engine."""
    if error is None:
        return None
    if isinstance(error, (RoleNotFoundError, AccessDeniedError)):
        return error.message
    return GENERIC_AUTHORIZATION_ERROR


def current_trace_id() -> Optional[str]:
    """Hex trace id of the active span, if one is recording."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            return f"{span_context.trace_id:032x}"
    return None
