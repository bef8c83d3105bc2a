"""
Reads events from a single calendar source.

``EventFetcher.fetch`` runs one time-windowed query through the credential
gateway under a per-source timeout. ``fetch_primary`` and ``fetch_optional``
apply the failure policy on top of it: the primary calendar is required,
holiday and secondary calendars are best effort.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List

from services.agenda.core.credential_gateway import CredentialGateway, RefreshSlot
from services.agenda.core.exceptions import (
    AuthExpiredError,
    PrimaryFetchFailedError,
    SourceUnavailableError,
)
from services.agenda.schemas import CalendarCredential, CalendarSource, TimeWindow
from services.common.logging_config import get_logger

logger = get_logger(__name__)

RawEvent = Dict[str, Any]

# (access_token, calendar_id, time_min, time_max, max_results) -> provider response
ListEvents = Callable[[str, str, str, str, int], Awaitable[Dict[str, Any]]]


class EventFetcher:
    def __init__(
        self,
        gateway: CredentialGateway,
        list_events: ListEvents,
        timeout: float = 10.0,
    ):
        self.gateway = gateway
        self.list_events = list_events
        self.timeout = timeout

    async def fetch(
        self,
        source: CalendarSource,
        window: TimeWindow,
        max_results: int,
        credential: CalendarCredential,
        refresh_slot: RefreshSlot,
    ) -> List[RawEvent]:
        """
        Query one source for events inside ``window``.

        Raises whatever the gateway or provider raise, and
        ``asyncio.TimeoutError`` when the source exceeds its timeout.
        """
        time_min = window.time_min.isoformat()
        time_max = window.time_max.isoformat()

        async def call(access_token: str) -> Dict[str, Any]:
            return await self.list_events(
                access_token, source.id, time_min, time_max, max_results
            )

        response = await asyncio.wait_for(
            self.gateway.with_valid_access_token(credential, refresh_slot, call),
            timeout=self.timeout,
        )
        items = response.get("items", [])
        logger.debug(
            "Fetched calendar source",
            source_id=source.id,
            source_kind=source.kind.value,
            event_count=len(items),
        )
        return items

    async def fetch_primary(
        self,
        source: CalendarSource,
        window: TimeWindow,
        max_results: int,
        credential: CalendarCredential,
        refresh_slot: RefreshSlot,
    ) -> List[RawEvent]:
        """Fetch the primary source; any failure other than auth expiry is fatal."""
        try:
            return await self.fetch(
                source, window, max_results, credential, refresh_slot
            )
        except AuthExpiredError:
            raise
        except Exception as e:
            logger.error(
                "Primary calendar fetch failed",
                source_id=source.id,
                error_type=type(e).__name__,
                error=getattr(e, "message", str(e)),
                upstream_status=getattr(e, "upstream_status", None),
                response_body=getattr(e, "response_body", None),
            )
            raise PrimaryFetchFailedError(cause=e) from e

    async def fetch_optional(
        self,
        source: CalendarSource,
        window: TimeWindow,
        max_results: int,
        credential: CalendarCredential,
        refresh_slot: RefreshSlot,
    ) -> List[RawEvent]:
        """Fetch a holiday or secondary source; failures drop the source."""
        try:
            return await self.fetch(
                source, window, max_results, credential, refresh_slot
            )
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                reason = "timeout"
            else:
                reason = type(e).__name__
            unavailable = SourceUnavailableError(source.id, source.kind.value, reason)
            logger.warning(
                "Calendar source unavailable, skipping",
                source_id=unavailable.source_id,
                source_kind=unavailable.source_kind,
                reason=unavailable.reason,
                error=getattr(e, "message", str(e)),
            )
            return []
