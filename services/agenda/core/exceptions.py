"""
Exceptions raised by the calendar aggregation engine.

Each one maps to a shared ``services.common.http_errors`` class so the
registered handlers render it with the right status code.
"""

from typing import Any, Dict, Optional

from services.common.http_errors import (
    AuthError,
    ConfigurationError,
    ErrorCode,
    ProviderError,
    ServiceError,
)


class CalendarNotConfiguredError(ConfigurationError):
    """The user has no enabled calendar or no access token (HTTP 400)."""

    def __init__(self, user_id: Optional[str] = None):
        super().__init__(
            "Calendar not configured or not enabled",
            details={"user_id": user_id} if user_id else None,
        )


class UpstreamAuthError(ProviderError):
    """
    The provider rejected the bearer token (upstream HTTP 401).

    Only ever seen inside the engine: the credential gateway either recovers
    from it with a refresh or converts it to ``AuthExpiredError``.
    """

    def __init__(
        self,
        message: str,
        provider: str = "google",
        response_body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            details=details,
            code=ErrorCode.PROVIDER_AUTH_FAILED,
            upstream_status=401,
            response_body=response_body,
        )


class AuthExpiredError(AuthError):
    """
    Calendar authorization could not be renewed (HTTP 401).

    Raised when the refresh exchange fails, when there is no refresh token,
    or when a call made with a freshly refreshed token is still rejected.
    The client must send the user through calendar re-consent.
    """

    def __init__(
        self,
        message: str = (
            "Calendar authorization expired. Please reconnect your calendar."
        ),
        reason: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"reconnect_required": True}
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details, code=ErrorCode.TOKEN_EXPIRED)
        self.reason = reason


class SourceUnavailableError(ProviderError):
    """An optional calendar source failed or timed out; the source is skipped."""

    def __init__(self, source_id: str, source_kind: str, reason: str):
        super().__init__(
            f"Calendar source {source_id} unavailable",
            provider="google",
            details={
                "source_id": source_id,
                "source_kind": source_kind,
                "reason": reason,
            },
            code=ErrorCode.SOURCE_UNAVAILABLE,
        )
        self.source_id = source_id
        self.source_kind = source_kind
        self.reason = reason


class PrimaryFetchFailedError(ServiceError):
    """
    The primary calendar could not be read (HTTP 500).

    The response message is generic; the underlying cause is only logged.
    """

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(
            "Failed to load calendar events",
            code=ErrorCode.PRIMARY_FETCH_FAILED,
            status_code=500,
        )
        self.cause = cause
