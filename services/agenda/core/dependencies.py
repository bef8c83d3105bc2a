from typing import Annotated, AsyncIterator

from fastapi import Depends, Request

from services.agenda.core.aggregator import CalendarAggregator
from services.agenda.core.clients.google import GoogleCalendarProvider
from services.agenda.core.credential_gateway import OAuthTokenRefresher
from services.agenda.core.credential_store import (
    CredentialStore,
    UserServiceCredentialStore,
)
from services.agenda.core.settings import get_settings
from services.common.http_errors import ValidationError


async def get_user_id_from_gateway(request: Request) -> str:
    """
    Extract user ID from gateway headers.

    The agenda service only supports requests through the gateway,
    which forwards user identity via X-User-Id header.
    """
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise ValidationError(message="X-User-Id header is required", field="X-User-Id")
    return user_id


async def get_credential_store() -> AsyncIterator[CredentialStore]:
    async with UserServiceCredentialStore() as store:
        yield store


async def get_calendar_aggregator(
    user_id: Annotated[str, Depends(get_user_id_from_gateway)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> CalendarAggregator:
    settings = get_settings()
    return CalendarAggregator(
        store=store,
        refresher=OAuthTokenRefresher(),
        provider=GoogleCalendarProvider(
            user_id,
            base_url=settings.GOOGLE_API_BASE_URL,
            timeout=settings.SOURCE_FETCH_TIMEOUT,
        ),
        source_timeout=settings.SOURCE_FETCH_TIMEOUT,
    )
