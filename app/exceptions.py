"""
API exception classes for the usage service.

Each exception carries its HTTP status code and a machine-readable error
code, and renders itself with to_dict(). Domain errors from src.usage are
translated into these at the route boundary.

Exception Hierarchy:
    MeteringException (base, 500)
    ├── ValidationError (400)
    ├── AuthenticationError (401)
    ├── AuthorizationError (403)
    ├── AnalysisRejectedError (422)
    ├── QuotaExceededError (429)
    ├── ServiceUnavailableError (503)
    │   ├── AITemporarilyUnavailableError
    │   └── DatabaseError
    └── ExternalServiceError (502)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error identifiers returned in error responses."""

    INTERNAL_ERROR = "INTERNAL_ERROR"

    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # 401
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"

    # 403
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # 422
    ANALYSIS_REJECTED = "ANALYSIS_REJECTED"

    # 429
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # 502 / 503
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    AI_TEMPORARILY_UNAVAILABLE = "AI_TEMPORARILY_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"
    USAGE_RECORDING_FAILED = "USAGE_RECORDING_FAILED"


class MeteringException(Exception):
    """
    Base exception for all API errors.

    Attributes:
        message: Client-facing message.
        error_code: ErrorCode for programmatic handling.
        status_code: HTTP status code.
        details: Extra context (no secrets).
        internal_message: Logged, never returned.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        response = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            response["details"] = self.details
        return response

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value!r}, "
            f"status_code={self.status_code})"
        )


class ValidationError(MeteringException):
    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details, internal_message=internal_message)


class AuthenticationError(MeteringException):
    """Missing, malformed, invalid or expired bearer token."""

    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class AuthorizationError(MeteringException):
    """Authenticated, but acting on another user's data."""

    status_code = 403
    default_error_code = ErrorCode.PERMISSION_DENIED
    default_message = "Permission denied"


class AnalysisRejectedError(MeteringException):
    """The AI result failed validation. The user was not charged."""

    status_code = 422
    default_error_code = ErrorCode.ANALYSIS_REJECTED
    default_message = "The analysis could not be completed. Your usage counter was not consumed."

    def __init__(self, reason: Optional[str] = None, internal_message: Optional[str] = None):
        details = {"reason": reason, "usage_consumed": False} if reason else {"usage_consumed": False}
        super().__init__(details=details, internal_message=internal_message)


class QuotaExceededError(MeteringException):
    """
    The user's AI quota for the day or month is used up.

    Carries the limit type and an upgrade hint so the client can show the
    right prompt.
    """

    status_code = 429
    default_error_code = ErrorCode.QUOTA_EXCEEDED
    default_message = "AI usage limit reached"

    def __init__(
        self,
        reason: Optional[str] = None,
        plan: Optional[str] = None,
        limit_type: Optional[str] = None,
        suggested_plan: Optional[str] = None,
        upgrade_url: Optional[str] = None,
        reset_date: Optional[datetime] = None,
    ):
        details: Dict[str, Any] = {}
        if plan:
            details["plan"] = plan
        if limit_type:
            details["limit_type"] = limit_type
        if suggested_plan:
            details["suggested_plan"] = suggested_plan
        if upgrade_url:
            details["upgrade_url"] = upgrade_url
        if reset_date:
            details["reset_date"] = reset_date.isoformat()
        super().__init__(message=reason, details=details)


class ExternalServiceError(MeteringException):
    status_code = 502
    default_error_code = ErrorCode.EXTERNAL_SERVICE_ERROR
    default_message = "An external service returned an error"


class ServiceUnavailableError(MeteringException):
    status_code = 503
    default_error_code = ErrorCode.AI_TEMPORARILY_UNAVAILABLE
    default_message = "Service temporarily unavailable"


class AITemporarilyUnavailableError(ServiceUnavailableError):
    """Transient engine failure. Not billed; the client may retry."""

    default_message = "AI is temporarily unavailable, please try again shortly. You were not charged."


class DatabaseError(ServiceUnavailableError):
    default_error_code = ErrorCode.DATABASE_ERROR
    default_message = "Usage data is temporarily unavailable"
