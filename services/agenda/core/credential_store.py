"""
Access to stored calendar credentials and preferences.

Credentials and display preferences are owned by the User Management
Service. This module reads them once per aggregation and writes back an
access token after a successful refresh. Nothing is cached between
requests.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from services.agenda.core.settings import get_settings
from services.agenda.schemas import CalendarAccount
from services.common.http_errors import ErrorCode, ServiceError
from services.common.logging_config import current_request_id, get_logger

logger = get_logger(__name__)


class CredentialStore(ABC):
    """Read/write interface to the user's stored calendar account."""

    @abstractmethod
    async def get(self, user_id: str) -> CalendarAccount:
        """Return the user's calendar account; an empty, disabled one if none exists."""

    @abstractmethod
    async def save(
        self, user_id: str, access_token: str, expiry: Optional[datetime]
    ) -> None:
        """Persist a refreshed access token and its expiry."""


class UserServiceCredentialStore(CredentialStore):
    """
    ``CredentialStore`` backed by the User Management Service internal API.

    Usage:
        async with UserServiceCredentialStore() as store:
            account = await store.get(user_id)
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        settings = get_settings()
        self.base_url = (base_url or settings.USER_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self.http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "UserServiceCredentialStore":
        self.http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        request_id = current_request_id()
        if request_id:
            headers["X-Request-Id"] = request_id

        api_key = get_settings().api_agenda_user_key
        if api_key:
            headers["X-API-Key"] = api_key
        else:
            logger.warning("No API key configured for user service communication")
        return headers

    def _client(self) -> httpx.AsyncClient:
        if not self.http_client:
            raise RuntimeError(
                "UserServiceCredentialStore not initialized. Use async context manager."
            )
        return self.http_client

    async def get(self, user_id: str) -> CalendarAccount:
        url = f"{self.base_url}/v1/internal/users/{user_id}/calendar"
        try:
            response = await self._client().get(url, headers=self._headers())
        except httpx.TimeoutException:
            logger.error("Credential lookup timed out", user_id=user_id)
            raise ServiceError(
                "User service timed out", code=ErrorCode.SERVICE_UNAVAILABLE
            )
        except httpx.RequestError as e:
            logger.error(
                "Credential lookup failed", user_id=user_id, error=str(e)
            )
            raise ServiceError(
                "User service unavailable", code=ErrorCode.SERVICE_UNAVAILABLE
            )

        if response.status_code == 404:
            logger.info("No calendar account stored for user", user_id=user_id)
            return CalendarAccount()

        if response.status_code != 200:
            logger.error(
                "Credential lookup returned an error",
                user_id=user_id,
                status_code=response.status_code,
            )
            raise ServiceError("Failed to load calendar settings")

        try:
            return CalendarAccount.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error(
                "Stored calendar account is malformed", user_id=user_id, error=str(e)
            )
            raise ServiceError("Failed to load calendar settings")

    async def save(
        self, user_id: str, access_token: str, expiry: Optional[datetime]
    ) -> None:
        url = f"{self.base_url}/v1/internal/users/{user_id}/calendar/token"
        payload = {
            "access_token": access_token,
            "expiry": expiry.isoformat() if expiry else None,
        }
        try:
            response = await self._client().put(
                url, json=payload, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "Failed to persist refreshed calendar token",
                user_id=user_id,
                error_type=type(e).__name__,
            )
            raise ServiceError(
                "Failed to save refreshed calendar token",
                code=ErrorCode.SERVICE_UNAVAILABLE,
            )
        logger.info("Persisted refreshed calendar token", user_id=user_id)
