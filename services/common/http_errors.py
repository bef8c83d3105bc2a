"""
Shared HTTP error classes and utilities for the agenda services.

Provides:
- ``ErrorCode`` registry and the ``ErrorResponse`` envelope
- ``AgendaAPIException`` base class and common subclasses
  (Validation, Configuration, Auth, Service, Provider)
- ``exception_to_response`` to turn any exception into an envelope
- ``register_exception_handlers`` to install the handlers on a FastAPI app

Usage:
>>> from services.common.http_errors import ValidationError, AuthError, ErrorCode
>>> raise ValidationError("days_to_show must be positive", field="days_to_show", value=0)
>>> raise AuthError("Calendar authorization expired", code=ErrorCode.TOKEN_EXPIRED)

Error code taxonomy:
- VALIDATION_* : input validation errors (422)
- CALENDAR_NOT_CONFIGURED : user-fixable configuration problems (400)
- AUTH_* / TOKEN_* : authentication errors (401)
- PERMISSION_DENIED : authorization errors (403)
- SERVICE_* / PRIMARY_FETCH_FAILED : internal service errors (5xx)
- PROVIDER_* / GOOGLE_* : upstream provider errors (502)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.common.logging_config import current_request_id, get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes shared by all services."""

    # General
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Configuration (400)
    CALENDAR_NOT_CONFIGURED = "CALENDAR_NOT_CONFIGURED"

    # Authentication (401)
    AUTH_FAILED = "AUTH_FAILED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"

    # Authorization (403)
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Service (5xx)
    SERVICE_ERROR = "SERVICE_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SERVICE_TIMEOUT = "SERVICE_TIMEOUT"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"
    PRIMARY_FETCH_FAILED = "PRIMARY_FETCH_FAILED"

    # Provider (502)
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_AUTH_FAILED = "PROVIDER_AUTH_FAILED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"

    # Google API specific
    GOOGLE_AUTH_FAILED = "GOOGLE_AUTH_FAILED"
    GOOGLE_INSUFFICIENT_PERMISSIONS = "GOOGLE_INSUFFICIENT_PERMISSIONS"
    GOOGLE_NOT_FOUND = "GOOGLE_NOT_FOUND"
    GOOGLE_RATE_LIMITED = "GOOGLE_RATE_LIMITED"
    GOOGLE_QUOTA_EXCEEDED = "GOOGLE_QUOTA_EXCEEDED"
    GOOGLE_SERVICE_ERROR = "GOOGLE_SERVICE_ERROR"
    GOOGLE_API_ERROR = "GOOGLE_API_ERROR"


class ErrorResponse(BaseModel):
    """
    Error envelope returned by every service.

    Attributes:
        type: Error category (e.g., "validation_error", "auth_error")
        message: Human-readable message safe to show to end users
        details: Additional context, including the error ``code``
        timestamp: ISO 8601 timestamp of when the error occurred
        request_id: Identifier used to correlate the response with logs
    """

    type: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: str
    request_id: str


def _resolve_request_id(request_id: Optional[str] = None) -> str:
    return request_id or current_request_id() or str(uuid.uuid4())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AgendaAPIException(Exception):
    """
    Base exception class for all API errors.

    Subclasses fix ``error_type`` and a default ``status_code``; handlers
    registered by ``register_exception_handlers`` render any instance as an
    ``ErrorResponse`` with that status.

    Args:
        message: The error message to display to users
        details: Optional dictionary with additional error context
        error_type: Error category string (defaults to "internal_error")
        error_code: Specific error code from ErrorCode enum
        status_code: HTTP status code (defaults to 500)
        request_id: Optional request ID (taken from the logging context if omitted)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_type: str = "internal_error",
        error_code: Optional[ErrorCode] = None,
        status_code: int = 500,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        self.error_type = error_type
        self.error_code = error_code
        self.status_code = status_code
        self.timestamp = _now_iso()
        self.request_id = _resolve_request_id(request_id)
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert the exception to an ``ErrorResponse`` envelope."""
        details = dict(self.details)
        if self.error_code:
            details["code"] = self.error_code.value
        return ErrorResponse(
            type=self.error_type,
            message=self.message,
            details=details or None,
            timestamp=self.timestamp,
            request_id=self.request_id,
        )


class ValidationError(AgendaAPIException):
    """Invalid client input (HTTP 422), optionally naming the offending field."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        validation_details = dict(details or {})
        if field:
            validation_details["field"] = field
        if value is not None:
            validation_details["value"] = str(value)
        super().__init__(
            message=message,
            details=validation_details,
            error_type="validation_error",
            error_code=ErrorCode.VALIDATION_FAILED,
            status_code=422,
        )
        self.field = field
        self.value = value


class ConfigurationError(AgendaAPIException):
    """
    A user-fixable configuration problem (HTTP 400).

    Raised when a feature the request depends on has not been set up, for
    example a calendar that was never connected. Never retried.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.CALENDAR_NOT_CONFIGURED,
    ):
        super().__init__(
            message=message,
            details=details,
            error_type="configuration_error",
            error_code=code,
            status_code=400,
        )


class AuthError(AgendaAPIException):
    """
    Authentication failure (HTTP 401 by default).

    Examples:
        >>> AuthError("API key required")
        >>> AuthError("Access token has expired", code=ErrorCode.TOKEN_EXPIRED)
        >>> AuthError("Permission denied", code=ErrorCode.PERMISSION_DENIED, status_code=403)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.AUTH_FAILED,
        status_code: int = 401,
    ):
        super().__init__(
            message=message,
            details=details,
            error_type="auth_error",
            error_code=code,
            status_code=status_code,
        )


class ServiceError(AgendaAPIException):
    """Internal or downstream service failure (HTTP 502 by default)."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.SERVICE_ERROR,
        status_code: int = 502,
    ):
        super().__init__(
            message=message,
            details=details,
            error_type="service_error",
            error_code=code,
            status_code=status_code,
        )


class ProviderError(AgendaAPIException):
    """
    Failure reported by an external provider such as Google (HTTP 502).

    ``upstream_status`` keeps the status code the provider answered with,
    which is independent of the status this service responds with.
    ``response_body`` is kept on the exception for logging only and is not
    copied into the response details.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.PROVIDER_ERROR,
        status_code: int = 502,
        upstream_status: Optional[int] = None,
        response_body: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        provider_details = dict(details or {})
        if provider:
            provider_details["provider"] = provider
        if upstream_status is not None:
            provider_details["upstream_status"] = upstream_status
        if retry_after is not None:
            provider_details["retry_after"] = retry_after
        super().__init__(
            message=message,
            details=provider_details,
            error_type="provider_error",
            error_code=code,
            status_code=status_code,
        )
        self.provider = provider
        self.upstream_status = upstream_status
        self.response_body = response_body
        self.retry_after = retry_after


def _http_exception_message(detail: Any) -> str:
    if isinstance(detail, dict):
        for key in ("message", "detail", "error"):
            if detail.get(key):
                return str(detail[key])
        return "HTTP error"
    return str(detail)


def exception_to_response(exc: Exception) -> ErrorResponse:
    """
    Convert any exception to an ``ErrorResponse``.

    ``AgendaAPIException`` instances render themselves. ``HTTPException``
    detail is normalized into ``details``. Anything else becomes a sanitized
    internal error: the original message is never exposed, only the
    exception class name.
    """
    if isinstance(exc, AgendaAPIException):
        return exc.to_error_response()

    if isinstance(exc, HTTPException):
        return ErrorResponse(
            type="http_error",
            message=_http_exception_message(exc.detail),
            details={"detail": exc.detail, "status_code": exc.status_code},
            timestamp=_now_iso(),
            request_id=_resolve_request_id(),
        )

    return ErrorResponse(
        type="internal_error",
        message="Internal server error",
        details={
            "error_type": type(exc).__name__,
            "code": ErrorCode.INTERNAL_ERROR.value,
        },
        timestamp=_now_iso(),
        request_id=_resolve_request_id(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Install the shared exception handlers on a FastAPI application.

    - ``AgendaAPIException``: rendered with the exception's own status code
    - ``RequestValidationError``: rendered as a 422 ``validation_error`` with
      the offending field names
    - ``HTTPException``: normalized into the envelope with its status code
    - anything else: logged with traceback and rendered as a sanitized 500
    """

    @app.exception_handler(AgendaAPIException)
    async def agenda_api_exception_handler(
        request: Request, exc: AgendaAPIException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_error_response().model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())[1:])
                or None,
                "message": error.get("msg"),
            }
            for error in exc.errors()
        ]
        error = ValidationError(
            "Invalid request parameters",
            field=errors[0]["field"] if errors else None,
            details={"errors": errors},
        )
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_error_response().model_dump(),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exception_to_response(exc).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(
            "Unhandled exception",
            path=request.url.path,
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500, content=exception_to_response(exc).model_dump()
        )
