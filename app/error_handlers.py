"""
Exception handlers for the usage service.

Every error leaves the API in one envelope:

    {"success": false, "error": "...", "error_code": "QUOTA_EXCEEDED", "details": {...}}

Domain errors raised under src.usage are translated onto app.exceptions
first. Only whitelisted detail keys reach the client, and messages are
scrubbed of secrets, paths, IPs and UUIDs. 5xx errors go to Sentry,
except transient AI outages which are expected and only logged.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import get_settings
from src.usage.errors import (
    AnalysisRejected,
    EngineError,
    LedgerUnavailableError,
    QuotaExceeded,
    TransientEngineError,
    UsageError,
    UsageRecordingError,
)

from .exceptions import (
    AITemporarilyUnavailableError,
    AnalysisRejectedError,
    DatabaseError,
    ErrorCode,
    ExternalServiceError,
    MeteringException,
    QuotaExceededError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An error occurred while processing your request"
MAX_MESSAGE_LENGTH = 500
MAX_REPORTED_ERRORS = 10

# Any hit replaces the whole message
_LEAKY = re.compile(
    r"api[_-]?key|secret|password|token|credential|bearer|postgres(?:ql)?://|/home/|/Users/|/var/|/etc/",
    re.IGNORECASE,
)

_SCRUBS = (
    (re.compile(r"[/\\][\w./\\-]+\.\w+"), "[path]"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "[ip]"),
    (re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE), "[id]"),
)

SAFE_DETAIL_KEYS = frozenset({
    "field", "plan", "limit_type", "suggested_plan", "upgrade_url",
    "reset_date", "reason", "usage_consumed", "error_reference",
    "sentry_event_id",
})

HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    403: ErrorCode.PERMISSION_DENIED,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.QUOTA_EXCEEDED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.AI_TEMPORARILY_UNAVAILABLE,
}

FORWARDED_HEADERS = frozenset({"Retry-After", "WWW-Authenticate"})


def sanitize_error_message(message: str) -> str:
    if not message:
        return message
    if _LEAKY.search(message):
        return GENERIC_MESSAGE
    for pattern, replacement in _SCRUBS:
        message = pattern.sub(replacement, message)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def sanitize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """Whitelisted primitive fields, plus at most ten validation errors."""
    sanitized: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key == "errors" and isinstance(value, list):
            sanitized[key] = value[:MAX_REPORTED_ERRORS]
        elif key in SAFE_DETAIL_KEYS and isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        elif key in SAFE_DETAIL_KEYS and isinstance(value, (int, float, bool)):
            sanitized[key] = value
    return sanitized


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten Pydantic errors to [{"field": ..., "message": ...}]."""
    formatted = []
    for error in errors[:MAX_REPORTED_ERRORS]:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "request"
        error_type = error.get("type", "")
        if error_type == "missing":
            message = f"Field '{field}' is required"
        elif error_type == "int_type":
            message = f"Field '{field}' must be an integer"
        elif "enum" in error_type.lower():
            message = f"Field '{field}' has an invalid value"
        else:
            message = sanitize_error_message(error.get("msg", "Invalid value"))
        formatted.append({"field": field, "message": message})
    return formatted


def create_error_response(
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code,
    }
    safe_details = sanitize_details(details)
    if safe_details:
        content["details"] = safe_details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def report_to_sentry(
    exc: BaseException,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Capture exc with the caller's uid and request id. Returns the event id."""
    try:
        if not sentry_sdk.get_client().is_active():
            return None
        with sentry_sdk.new_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                user_id = getattr(request.state, "user_id", None)
                if user_id:
                    scope.set_user({"id": user_id})
                request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning(f"Failed to report exception to Sentry: {e}")
        return None


def translate_usage_error(exc: UsageError) -> MeteringException:
    """Map a domain error from src.usage onto the API hierarchy."""
    if isinstance(exc, QuotaExceeded):
        return QuotaExceededError(
            reason=exc.reason,
            plan=exc.plan.value,
            limit_type=exc.limit_type,
            suggested_plan=exc.suggested_plan.value if exc.suggested_plan else None,
            upgrade_url=get_settings().usage.upgrade_url,
            reset_date=exc.reset_date,
        )
    if isinstance(exc, AnalysisRejected):
        return AnalysisRejectedError(reason=exc.reason)
    if isinstance(exc, TransientEngineError):
        return AITemporarilyUnavailableError(internal_message=str(exc))
    if isinstance(exc, EngineError):
        return ExternalServiceError(internal_message=str(exc))
    if isinstance(exc, LedgerUnavailableError):
        return DatabaseError(internal_message=str(exc))
    if isinstance(exc, UsageRecordingError):
        return ServiceUnavailableError(
            message="Usage could not be recorded",
            error_code=ErrorCode.USAGE_RECORDING_FAILED,
            internal_message=str(exc),
        )
    return MeteringException(internal_message=str(exc))


async def metering_exception_handler(request: Request, exc: MeteringException) -> JSONResponse:
    summary = f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    if exc.internal_message:
        summary += f" ({exc.internal_message})"

    if isinstance(exc, AITemporarilyUnavailableError):
        logger.warning(summary)
    elif exc.status_code >= 500:
        logger.error(summary)
        report_to_sentry(exc, request)
    else:
        logger.info(summary)

    return create_error_response(
        status_code=exc.status_code,
        error=exc.message,
        error_code=exc.error_code.value,
        details=exc.details,
        headers={"Retry-After": "30"} if isinstance(exc, ServiceUnavailableError) else None,
    )


async def usage_error_handler(request: Request, exc: UsageError) -> JSONResponse:
    return await metering_exception_handler(request, translate_usage_error(exc))


def _validation_response(request: Request, raw_errors: List[Dict[str, Any]], status_code: int) -> JSONResponse:
    errors = format_pydantic_errors(raw_errors)
    logger.warning(f"Validation failed on {request.method} {request.url.path}: {len(errors)} error(s)")
    return create_error_response(
        status_code=status_code,
        error=errors[0]["message"] if len(errors) == 1 else f"Validation failed with {len(errors)} error(s)",
        error_code=ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _validation_response(request, exc.errors(), status.HTTP_422_UNPROCESSABLE_ENTITY)


async def pydantic_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    # Raised while building models inside a handler, e.g. a malformed plan state
    return _validation_response(request, exc.errors(), status.HTTP_400_BAD_REQUEST)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.log(logging.ERROR if exc.status_code >= 500 else logging.WARNING, f"HTTP {exc.status_code}: {detail}")

    headers = {k: v for k, v in (exc.headers or {}).items() if k in FORWARDED_HEADERS}
    return create_error_response(
        status_code=exc.status_code,
        error=detail,
        error_code=HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR).value,
        headers=headers or None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log with traceback, report, and answer with a reference the user can quote."""
    reference = uuid.uuid4().hex[:8]
    logger.error(
        f"Unhandled exception [ref:{reference}] on {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    event_id = report_to_sentry(exc, request, extra_context={"error_reference": reference})

    details: Dict[str, Any] = {"error_reference": reference}
    if get_settings().is_production:
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
        if event_id:
            details["sentry_event_id"] = event_id

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=message,
        error_code=ErrorCode.INTERNAL_ERROR.value,
        details=details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MeteringException, metering_exception_handler)
    app.add_exception_handler(UsageError, usage_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
