"""
Calendar aggregation: enumerate sources, fetch, merge, normalize, filter.

One call to ``CalendarAggregator.aggregate`` is one self-contained
computation. Its ``RefreshSlot`` and the in-memory credential copy live only
for the duration of the call.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from services.agenda.core.clients.google import GoogleCalendarProvider
from services.agenda.core.credential_gateway import (
    CredentialGateway,
    OAuthTokenRefresher,
    RefreshSlot,
)
from services.agenda.core.credential_store import CredentialStore
from services.agenda.core.exceptions import CalendarNotConfiguredError
from services.agenda.core.fetcher import EventFetcher
from services.agenda.core.filters import (
    apply_display_preferences,
    apply_filters,
    filter_preferences,
)
from services.agenda.core.normalizer import effective_start, normalize_event
from services.agenda.core.sources import SourceEnumerator
from services.agenda.schemas import (
    AggregationQuery,
    AggregationResult,
    CalendarAccount,
    CalendarCounts,
    CalendarSource,
    DisplayPreferences,
    EventSummary,
    FilteredSummary,
    FilterReport,
    NormalizedEvent,
    SourceKind,
    TimeRange,
    TimeWindow,
)
from services.common.logging_config import get_logger

logger = get_logger(__name__)

TaggedEvent = Tuple[Dict[str, Any], CalendarSource]


def summarize(events: Sequence[NormalizedEvent]) -> EventSummary:
    """Count events by temporal state, all-day/holiday flags and source kind."""
    by_calendar = CalendarCounts(
        primary=sum(1 for e in events if e.source_kind == SourceKind.PRIMARY),
        holiday=sum(1 for e in events if e.source_kind == SourceKind.HOLIDAY),
        secondary=sum(1 for e in events if e.source_kind == SourceKind.SECONDARY),
    )
    return EventSummary(
        total=len(events),
        upcoming=sum(1 for e in events if e.is_upcoming),
        ongoing=sum(1 for e in events if e.is_ongoing),
        past=sum(1 for e in events if e.is_past),
        holidays=sum(1 for e in events if e.is_holiday),
        all_day=sum(1 for e in events if e.is_all_day),
        by_calendar=by_calendar,
    )


def merge_events(
    batches: Sequence[Tuple[CalendarSource, List[Dict[str, Any]]]], limit: int
) -> List[TaggedEvent]:
    """Tag raw events with their source, order by start and keep the first ``limit``."""
    tagged = [(raw, source) for source, events in batches for raw in events]
    tagged.sort(key=lambda pair: effective_start(pair[0]))
    return tagged[:limit]


class CalendarAggregator:
    """
    Builds an ``AggregationResult`` for one user request.

    Args:
        store: Credential store used to persist a refreshed token
        refresher: OAuth refresh exchange
        provider: Calendar provider calls keyed by access token
        source_timeout: Timeout in seconds for each source fetch
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: OAuthTokenRefresher,
        provider: GoogleCalendarProvider,
        source_timeout: float = 10.0,
    ):
        self.store = store
        self.refresher = refresher
        self.provider = provider
        self.source_timeout = source_timeout

    async def aggregate(
        self,
        user_id: str,
        account: CalendarAccount,
        query: AggregationQuery,
        now: Optional[datetime] = None,
    ) -> AggregationResult:
        if not account.is_configured or account.credential is None:
            raise CalendarNotConfiguredError(user_id)

        credential = account.credential.model_copy()
        preferences = account.preferences
        now = now or datetime.now(timezone.utc)
        window = TimeWindow(
            time_min=now, time_max=now + timedelta(days=query.days_to_show)
        )

        refresh_slot = RefreshSlot()
        gateway = CredentialGateway(user_id, self.store, self.refresher)
        enumerator = SourceEnumerator(
            gateway, self.provider.list_calendars, timeout=self.source_timeout
        )
        fetcher = EventFetcher(
            gateway, self.provider.list_events, timeout=self.source_timeout
        )

        try:
            sources = await enumerator.enumerate(
                credential,
                preferences,
                refresh_slot,
                include_holidays=query.include_holidays,
            )
            primary, optional = sources[0], sources[1:]

            primary_task = asyncio.ensure_future(
                fetcher.fetch_primary(
                    primary, window, query.max_results, credential, refresh_slot
                )
            )
            optional_tasks = [
                asyncio.ensure_future(
                    fetcher.fetch_optional(
                        source, window, query.max_results, credential, refresh_slot
                    )
                )
                for source in optional
            ]
            try:
                primary_events = await primary_task
                optional_events = await asyncio.gather(*optional_tasks)
            except BaseException:
                # Primary failure or cancellation stops the remaining fetches
                for task in optional_tasks:
                    task.cancel()
                await asyncio.gather(*optional_tasks, return_exceptions=True)
                raise
        finally:
            await refresh_slot.close()

        merged = merge_events(
            [(primary, primary_events), *zip(optional, optional_events)],
            query.max_results,
        )

        normalized: List[NormalizedEvent] = []
        for raw_event, source in merged:
            try:
                normalized.append(normalize_event(raw_event, source, now))
            except ValueError as e:
                logger.warning(
                    "Skipping malformed event", source_id=source.id, error=str(e)
                )

        raw_summary = summarize(normalized)
        filtered = apply_filters(normalized, preferences)
        filtered_summary = FilteredSummary(
            **summarize(filtered).model_dump(),
            filters=FilterReport(
                applied=len(filtered) != len(normalized),
                total_before_filters=len(normalized),
                total_after_filters=len(filtered),
                preferences=filter_preferences(preferences),
            ),
        )

        logger.info(
            "Calendar aggregation completed",
            user_id=user_id,
            sources=len(sources),
            fetched=len(primary_events) + sum(len(batch) for batch in optional_events),
            returned=len(filtered),
            token_refreshed=refresh_slot.has_refreshed,
        )

        return AggregationResult(
            events=apply_display_preferences(filtered, preferences),
            raw_summary=raw_summary,
            filtered_summary=filtered_summary,
            time_range=TimeRange(
                from_=window.time_min, to=window.time_max, days=query.days_to_show
            ),
            preferences=DisplayPreferences(
                time_format=preferences.time_format,
                timezone=preferences.timezone,
                holiday_country=preferences.holiday_country,
            ),
        )
