"""
Base API client for external calendar providers.

Provides common functionality for HTTP requests, error handling,
and authentication across provider APIs.
"""

import json
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import httpx

from services.agenda.core.exceptions import UpstreamAuthError
from services.common.http_errors import ErrorCode, ProviderError
from services.common.logging_config import current_request_id, get_logger

logger = get_logger(__name__)


class BaseAPIClient(ABC):
    """
    Base class for provider-specific clients.

    A client is bound to one access token and owns its ``httpx.AsyncClient``
    for the lifetime of an ``async with`` block, so a refreshed token always
    gets a fresh client and nothing is pooled across requests.
    """

    provider: str = "unknown"

    def __init__(self, access_token: str, user_id: str, timeout: float = 30.0):
        self.access_token = access_token
        self.user_id = user_id
        self.timeout = timeout
        self.http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "BaseAPIClient":
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers=self._get_default_headers(),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None

    @abstractmethod
    def _get_default_headers(self) -> Dict[str, str]:
        """Get default headers for API requests. Must be implemented by subclasses."""

    @abstractmethod
    def _get_base_url(self) -> str:
        """Get base URL for the provider API. Must be implemented by subclasses."""

    def _parse_error(
        self, response_text: str, status_code: int
    ) -> Tuple[str, ErrorCode]:
        """Map a provider error body to a user-friendly message and error code."""
        return (
            f"{self.provider} API error (HTTP {status_code})",
            ErrorCode.PROVIDER_ERROR,
        )

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with logging and error mapping.

        Raises:
            UpstreamAuthError: provider answered 401
            ProviderError: any other HTTP error, timeout or transport failure
        """
        if not self.http_client:
            raise RuntimeError(
                "HTTP client not initialized. Use async context manager."
            )

        url = f"{self._get_base_url()}{endpoint}"
        request_id = current_request_id() or str(uuid.uuid4())
        started = time.perf_counter()

        try:
            response = await self.http_client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers={"X-Request-Id": request_id},
                **kwargs,
            )
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.debug(
                f"{method.upper()} {endpoint} → {response.status_code}",
                provider=self.provider,
                response_time_ms=elapsed_ms,
            )
            response.raise_for_status()
            return response

        except httpx.TimeoutException:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.error(
                "Provider request timed out",
                provider=self.provider,
                endpoint=endpoint,
                timeout_ms=elapsed_ms,
            )
            raise ProviderError(
                message=f"Request timeout after {elapsed_ms}ms",
                provider=self.provider,
                code=ErrorCode.PROVIDER_TIMEOUT,
                details={"endpoint": endpoint, "method": method.upper()},
            )

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            message, code = self._parse_error(e.response.text, status_code)
            logger.error(
                "Provider returned an error",
                provider=self.provider,
                endpoint=endpoint,
                status_code=status_code,
                error=message,
            )

            if status_code == 401:
                raise UpstreamAuthError(
                    message,
                    provider=self.provider,
                    response_body=e.response.text,
                    details={"endpoint": endpoint},
                )

            retry_after = None
            if status_code == 429:
                header = e.response.headers.get("Retry-After")
                if header and header.isdigit():
                    retry_after = int(header)

            raise ProviderError(
                message=message,
                provider=self.provider,
                code=code,
                upstream_status=status_code,
                response_body=e.response.text,
                retry_after=retry_after,
                details={"endpoint": endpoint, "method": method.upper()},
            )

        except httpx.RequestError as e:
            logger.error(
                "Provider request failed",
                provider=self.provider,
                endpoint=endpoint,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ProviderError(
                message=f"Request failed: {type(e).__name__}",
                provider=self.provider,
                details={"endpoint": endpoint, "method": method.upper()},
            )

    async def get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> httpx.Response:
        """Make a GET request"""
        return await self._make_request("GET", endpoint, params=params, **kwargs)


def parse_json_error(response_text: str) -> Tuple[str, str]:
    """Pull ``(reason, message)`` out of a ``{"error": {...}}`` body, if present."""
    try:
        error = json.loads(response_text).get("error", {})
    except (json.JSONDecodeError, AttributeError):
        return "", ""
    if not isinstance(error, dict):
        return "", str(error)
    reasons = [
        item.get("reason", "")
        for item in error.get("errors", [])
        if isinstance(item, dict)
    ]
    return (reasons[0] if reasons else str(error.get("status", ""))), str(
        error.get("message", "")
    )
