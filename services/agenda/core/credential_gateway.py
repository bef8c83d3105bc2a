"""
Keeps the calendar access token usable across one aggregation.

Every provider call made during an aggregation goes through
``CredentialGateway.with_valid_access_token``. When the provider rejects
the token, the gateway refreshes it at most once per aggregation: the first
caller to notice starts the OAuth refresh exchange as a task on the
``RefreshSlot``, and every caller that was rejected with the old token
awaits that same task and then reuses the refreshed token.

A ``RefreshSlot`` belongs to exactly one aggregation and is created by the
aggregator. It is never shared between requests.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from services.agenda.core.credential_store import CredentialStore
from services.agenda.core.exceptions import AuthExpiredError, UpstreamAuthError
from services.agenda.core.settings import get_settings
from services.agenda.schemas import CalendarCredential
from services.common.http_errors import AgendaAPIException
from services.common.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TokenRefreshError(Exception):
    """The OAuth refresh exchange did not produce a new access token."""


@dataclass
class RefreshedToken:
    access_token: str
    expiry: Optional[datetime] = None


class RefreshSlot:
    """
    Single-flight refresh state for one aggregation.

    ``task`` is the one refresh exchange of the aggregation. It is created by
    the first caller that needs a new token and awaited by every caller
    through ``asyncio.shield``, so a caller that times out or is cancelled
    never cancels the exchange for the others. When it finishes, either
    ``access_token`` holds the refreshed token or ``failure`` records why
    renewal is impossible.
    """

    def __init__(self) -> None:
        self.task: Optional["asyncio.Task[Optional[str]]"] = None
        self.access_token: Optional[str] = None
        self.expiry: Optional[datetime] = None
        self.failure: Optional[str] = None
        self.refresh_count = 0

    @property
    def has_refreshed(self) -> bool:
        return self.access_token is not None

    async def close(self) -> None:
        """Cancel a refresh exchange that is still running."""
        if self.task is not None and not self.task.done():
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)


class OAuthTokenRefresher:
    """Performs the OAuth ``refresh_token`` grant against the provider's token endpoint."""

    def __init__(
        self,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30.0,
    ):
        settings = get_settings()
        self.token_url = token_url or settings.GOOGLE_TOKEN_URL
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.timeout = timeout

    async def refresh(self, refresh_token: str) -> RefreshedToken:
        if not self.client_id or not self.client_secret:
            raise TokenRefreshError("OAuth client credentials are not configured")

        refresh_params = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.token_url,
                    data=refresh_params,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                token_data = response.json()
        except httpx.HTTPError as e:
            logger.error("oauth_token_refresh_failed", error_type=type(e).__name__)
            raise TokenRefreshError(f"Token refresh failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error("oauth_token_refresh_failed", error="invalid JSON body")
            raise TokenRefreshError("Token refresh returned an invalid body") from e

        access_token = token_data.get("access_token")
        if not access_token:
            raise TokenRefreshError("Token refresh response has no access_token")

        expiry = None
        expires_in = token_data.get("expires_in")
        if isinstance(expires_in, (int, float)):
            expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        logger.info("oauth_token_refreshed", expires_in=expires_in)
        return RefreshedToken(access_token=access_token, expiry=expiry)


class CredentialGateway:
    """Runs provider calls with a valid access token, refreshing at most once per slot."""

    def __init__(
        self,
        user_id: str,
        store: CredentialStore,
        refresher: OAuthTokenRefresher,
    ):
        self.user_id = user_id
        self.store = store
        self.refresher = refresher

    async def with_valid_access_token(
        self,
        credential: CalendarCredential,
        refresh_slot: RefreshSlot,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Invoke ``call`` with the current access token.

        On an upstream authorization failure the token is renewed through
        ``refresh_slot`` and ``call`` is retried exactly once.

        Raises:
            AuthExpiredError: renewal failed, or the retried call was still rejected
        """
        token = refresh_slot.access_token or credential.access_token
        if not token:
            raise AuthExpiredError(reason="missing_access_token")

        try:
            return await call(token)
        except UpstreamAuthError:
            logger.info("Provider rejected access token", user_id=self.user_id)

        renewed = await self._renew(credential, refresh_slot, rejected_token=token)

        try:
            return await call(renewed)
        except UpstreamAuthError:
            logger.warning(
                "Provider rejected refreshed access token", user_id=self.user_id
            )
            raise AuthExpiredError(reason="rejected_after_refresh")

    async def _renew(
        self,
        credential: CalendarCredential,
        slot: RefreshSlot,
        rejected_token: str,
    ) -> str:
        if slot.failure:
            raise AuthExpiredError(reason=slot.failure)

        if slot.access_token is not None:
            if slot.access_token == rejected_token:
                raise AuthExpiredError(reason="rejected_after_refresh")
            logger.debug("Reusing token refreshed by a concurrent fetch")
            return slot.access_token

        if slot.task is None:
            if not credential.refresh_token:
                slot.failure = "no_refresh_token"
                logger.warning(
                    "Cannot refresh calendar token",
                    user_id=self.user_id,
                    reason=slot.failure,
                )
                raise AuthExpiredError(reason=slot.failure)
            slot.task = asyncio.ensure_future(
                self._exchange(credential, slot, credential.refresh_token)
            )
        else:
            logger.debug("Waiting for refresh started by a concurrent fetch")

        renewed = await asyncio.shield(slot.task)
        if renewed is None:
            raise AuthExpiredError(reason=slot.failure or "refresh_failed")
        return renewed

    async def _exchange(
        self, credential: CalendarCredential, slot: RefreshSlot, refresh_token: str
    ) -> Optional[str]:
        """Run the refresh exchange once and record its outcome in ``slot``."""
        try:
            refreshed = await self.refresher.refresh(refresh_token)
        except TokenRefreshError as e:
            slot.failure = "refresh_failed"
            logger.error(
                "Calendar token refresh failed", user_id=self.user_id, error=str(e)
            )
            return None

        slot.refresh_count += 1
        slot.access_token = refreshed.access_token
        slot.expiry = refreshed.expiry
        credential.access_token = refreshed.access_token
        credential.expiry = refreshed.expiry

        try:
            await self.store.save(
                self.user_id, refreshed.access_token, refreshed.expiry
            )
        except AgendaAPIException as e:
            # The new token is still valid for the rest of this aggregation
            logger.warning(
                "Refreshed token was not persisted",
                user_id=self.user_id,
                error=e.message,
            )

        return refreshed.access_token
