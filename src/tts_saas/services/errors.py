"""
Generation Errors and Reason Codes.

Every failure the pipeline can report is a GenerationError carrying a
machine-readable reason code, a human-readable message and optional
details. The API layer maps the code to an HTTP status; nothing below the
API knows about HTTP.

Hierarchy:
    GenerationError
      ValidationError        VALIDATION (raised before any ledger or gateway call)
      AuthenticationError    UNAUTHENTICATED
      AuthorizationError     NO_SUBSCRIPTION | EXPIRED | INSUFFICIENT_CREDITS
      UpstreamError          UPSTREAM_FAILURE
        UpstreamTimeoutError TIMEOUT
      PersistenceError       PERSISTENCE_FAILURE
      NotFoundError          NOT_FOUND
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Reason codes returned in error responses."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    VALIDATION = "VALIDATION"
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    EXPIRED = "EXPIRED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    TIMEOUT = "TIMEOUT"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DENIAL_CODES = frozenset({
    ErrorCode.NO_SUBSCRIPTION,
    ErrorCode.EXPIRED,
    ErrorCode.INSUFFICIENT_CREDITS,
})


class GenerationError(Exception):
    """
    Base exception for generation failures.

    Attributes:
        message: Human-readable error message.
        code: Reason code from ErrorCode.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error response body."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(GenerationError):
    """
    Raised when a request is malformed.

    ``reason`` narrows the failure (TEXT_REQUIRED, TEXT_TOO_LONG,
    VOICE_REQUIRED, ...) and is echoed in details.
    """

    def __init__(self, message: str, reason: str = "INVALID_REQUEST", details: Optional[Dict] = None):
        self.reason = reason
        merged = {"reason": reason}
        merged.update(details or {})
        super().__init__(message, ErrorCode.VALIDATION, merged)


class AuthenticationError(GenerationError):
    """Raised when the caller cannot be identified."""
    def __init__(self, message: str = "Unauthorized", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.UNAUTHENTICATED, details)


class AuthorizationError(GenerationError):
    """Raised when the caller's subscription does not allow the generation."""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        if code not in DENIAL_CODES:
            raise ValueError(f"not a denial code: {code}")
        super().__init__(message, code, details)


class UpstreamError(GenerationError):
    """Raised when the synthesis service fails or returns no audio."""
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Optional[Dict] = None,
        code: str = ErrorCode.UPSTREAM_FAILURE,
    ):
        self.status = status
        merged: Dict[str, Any] = {}
        if status is not None:
            merged["upstream_status"] = status
        merged.update(details or {})
        super().__init__(message, code, merged)


class UpstreamTimeoutError(UpstreamError):
    """Raised when the synthesis service misses its deadline."""
    def __init__(self, message: str = "Request timed out. Try with shorter text.", details: Optional[Dict] = None):
        super().__init__(message, details=details, code=ErrorCode.TIMEOUT)


class PersistenceError(GenerationError):
    """Raised when generated audio could not be saved."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.PERSISTENCE_FAILURE, details)


class NotFoundError(GenerationError):
    def __init__(self, message: str = "Not found", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.NOT_FOUND, details)
