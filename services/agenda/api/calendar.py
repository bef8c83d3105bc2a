"""
Calendar endpoints for the Agenda Service.

All user-facing endpoints extract user from the X-User-Id header (set by the gateway).
No user_id is accepted in the path or query.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from fastapi import APIRouter, Depends, Query, Request

from services.agenda.core.aggregator import CalendarAggregator
from services.agenda.core.auth import service_permission_required
from services.agenda.core.credential_store import CredentialStore
from services.agenda.core.dependencies import (
    get_calendar_aggregator,
    get_credential_store,
    get_user_id_from_gateway,
)
from services.agenda.core.exceptions import CalendarNotConfiguredError
from services.agenda.core.settings import get_settings
from services.agenda.core.sources import list_holiday_calendars
from services.agenda.schemas import (
    AgendaApiResponse,
    AggregationQuery,
    AggregationResult,
    CalendarCredential,
    CalendarSettingsResponse,
    CalendarSettingsView,
    HolidayCalendarListResponse,
    UserPreferences,
)
from services.common.http_errors import ErrorCode, ServiceError
from services.common.logging_config import current_request_id, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])

MAX_DAYS_TO_SHOW = 90
MAX_RESULTS = 250

T = TypeVar("T")


def get_request_id() -> str:
    """Get the current request ID from context or a fallback."""
    return current_request_id() or "no-request-id"


def build_query(
    preferences: UserPreferences,
    days_to_show: Optional[int],
    max_results: Optional[int],
    include_holidays: Optional[bool],
) -> AggregationQuery:
    """Fill missing query parameters from the user's preferences, then service defaults."""
    settings = get_settings()
    days = days_to_show or preferences.days_to_show or settings.DEFAULT_DAYS_TO_SHOW
    limit = max_results or preferences.max_events or settings.DEFAULT_MAX_RESULTS
    return AggregationQuery(
        days_to_show=min(days, MAX_DAYS_TO_SHOW),
        max_results=min(limit, MAX_RESULTS),
        include_holidays=(
            preferences.show_holidays if include_holidays is None else include_holidays
        ),
    )


async def run_bounded(
    request: Request, work: Awaitable[T], deadline: float, poll_interval: float
) -> T:
    """
    Await ``work`` as a task that is cancelled when the client disconnects
    or ``deadline`` seconds pass.

    Cancelling the task cancels every source fetch still in flight.
    """
    task = asyncio.ensure_future(work)
    loop = asyncio.get_running_loop()
    expires_at = loop.time() + deadline
    try:
        while True:
            remaining = expires_at - loop.time()
            if remaining <= 0:
                logger.warning("Calendar request deadline exceeded", deadline=deadline)
                raise ServiceError(
                    "Calendar request timed out",
                    code=ErrorCode.SERVICE_TIMEOUT,
                    status_code=504,
                )
            done, _ = await asyncio.wait({task}, timeout=min(poll_interval, remaining))
            if task in done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling calendar aggregation")
                raise ServiceError(
                    "Client closed request",
                    code=ErrorCode.CLIENT_DISCONNECTED,
                    status_code=499,
                )
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


@router.get("/events", response_model=AgendaApiResponse)
async def get_calendar_events(
    request: Request,
    days_to_show: Optional[int] = Query(
        None,
        ge=1,
        le=MAX_DAYS_TO_SHOW,
        description="Number of days ahead to include (defaults to the user's preference)",
    ),
    max_results: Optional[int] = Query(
        None,
        ge=1,
        le=MAX_RESULTS,
        description="Maximum number of events before filtering (defaults to the user's preference)",
    ),
    include_holidays: Optional[bool] = Query(
        None, description="Include the public holiday calendar"
    ),
    service_name: str = Depends(service_permission_required(["read_calendar"])),
    user_id: str = Depends(get_user_id_from_gateway),
    store: CredentialStore = Depends(get_credential_store),
    aggregator: CalendarAggregator = Depends(get_calendar_aggregator),
) -> AgendaApiResponse:
    """
    Get the merged, preference-filtered view of the user's upcoming events.

    Events are read from the primary calendar, the holiday calendar for the
    user's country and up to five other calendars the user can access.
    Holiday and secondary calendars that fail are left out of the result.
    """
    request_id = get_request_id()
    settings = get_settings()

    async def aggregate() -> AggregationResult:
        account = await store.get(user_id)
        if not account.is_configured:
            raise CalendarNotConfiguredError(user_id)
        query = build_query(
            account.preferences, days_to_show, max_results, include_holidays
        )
        logger.info(
            "Calendar events request",
            days_to_show=query.days_to_show,
            max_results=query.max_results,
            include_holidays=query.include_holidays,
        )
        return await aggregator.aggregate(user_id, account, query)

    result = await run_bounded(
        request,
        aggregate(),
        deadline=settings.AGGREGATION_TIMEOUT,
        poll_interval=settings.DISCONNECT_POLL_INTERVAL,
    )
    return AgendaApiResponse(success=True, data=result, request_id=request_id)


@router.get("/holiday-calendars", response_model=HolidayCalendarListResponse)
async def get_holiday_calendars(
    service_name: str = Depends(service_permission_required(["read_calendar"])),
) -> HolidayCalendarListResponse:
    """List the supported public holiday calendars."""
    return HolidayCalendarListResponse(
        data=list_holiday_calendars(), request_id=get_request_id()
    )


@router.get("/settings", response_model=CalendarSettingsResponse)
async def get_calendar_settings(
    service_name: str = Depends(
        service_permission_required(["read_calendar_settings"])
    ),
    user_id: str = Depends(get_user_id_from_gateway),
    store: CredentialStore = Depends(get_credential_store),
) -> CalendarSettingsResponse:
    """Get the user's calendar connection state and preferences. Tokens are never returned."""
    account = await store.get(user_id)
    credential = account.credential or CalendarCredential()
    return CalendarSettingsResponse(
        data=CalendarSettingsView(
            enabled=account.enabled,
            calendar_id=credential.calendar_id,
            preferences=account.preferences,
            has_tokens=bool(credential.access_token and credential.refresh_token),
        ),
        request_id=get_request_id(),
    )
