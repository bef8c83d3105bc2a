"""
Decides which calendar sources an aggregation reads.

There is always the primary calendar, at most one public holiday calendar
chosen from a fixed country table, and up to ``MAX_SECONDARY_SOURCES`` other
calendars from the user's calendar list.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from services.agenda.core.credential_gateway import CredentialGateway, RefreshSlot
from services.agenda.core.exceptions import AuthExpiredError
from services.agenda.schemas import (
    CalendarCredential,
    CalendarSource,
    HolidayCalendar,
    SourceKind,
    UserPreferences,
)
from services.common.logging_config import get_logger

logger = get_logger(__name__)

MAX_SECONDARY_SOURCES = 5
SECONDARY_ACCESS_ROLES = frozenset({"owner", "writer", "reader"})
DEFAULT_SECONDARY_COLOR = "#4285f4"
PRIMARY_DISPLAY_NAME = "Primary Calendar"
HOLIDAY_DISPLAY_NAME = "Holidays"

_HOLIDAY_SUFFIX = "#holiday@group.v.calendar.google.com"

# (country code, calendar id prefix, country, language, display name)
_HOLIDAY_TABLE: Tuple[Tuple[str, str, str, str, str], ...] = (
    ("US", "en.usa", "United States", "English", "US Holidays"),
    ("GB", "en.uk", "United Kingdom", "English", "UK Holidays"),
    ("CA", "en.canadian", "Canada", "English", "Canadian Holidays"),
    ("AU", "en.australian", "Australia", "English", "Australian Holidays"),
    ("DE", "de.german", "Germany", "German", "German Holidays"),
    ("FR", "fr.french", "France", "French", "French Holidays"),
    ("ES", "es.spanish", "Spain", "Spanish", "Spanish Holidays"),
    ("IT", "it.italian", "Italy", "Italian", "Italian Holidays"),
    ("JP", "ja.japanese", "Japan", "Japanese", "Japanese Holidays"),
    ("IN", "en.indian", "India", "English", "Indian Holidays"),
    ("CN", "zh.chinese", "China", "Chinese", "Chinese Holidays"),
    ("BR", "pt.brazilian", "Brazil", "Portuguese", "Brazilian Holidays"),
    ("RU", "ru.russian", "Russia", "Russian", "Russian Holidays"),
    ("KR", "ko.south_korean", "South Korea", "Korean", "South Korean Holidays"),
    ("NL", "nl.dutch", "Netherlands", "Dutch", "Dutch Holidays"),
)

HOLIDAY_CALENDARS: Dict[str, HolidayCalendar] = {
    code: HolidayCalendar(
        id=f"{prefix}{_HOLIDAY_SUFFIX}",
        country=country,
        country_code=code,
        language=language,
        name=name,
    )
    for code, prefix, country, language, name in _HOLIDAY_TABLE
}
DEFAULT_HOLIDAY_COUNTRY = "US"
HOLIDAY_CALENDAR_IDS = frozenset(calendar.id for calendar in HOLIDAY_CALENDARS.values())


def resolve_holiday_calendar(country_code: Optional[str]) -> HolidayCalendar:
    """Return the holiday calendar for ``country_code``, falling back to the US calendar."""
    code = (country_code or "").strip().upper()
    if code in HOLIDAY_CALENDARS:
        return HOLIDAY_CALENDARS[code]
    if code:
        logger.info("Unsupported holiday country, using default", country_code=code)
    return HOLIDAY_CALENDARS[DEFAULT_HOLIDAY_COUNTRY]


def list_holiday_calendars() -> List[HolidayCalendar]:
    return list(HOLIDAY_CALENDARS.values())


ListCalendars = Callable[[str], Awaitable[List[Dict[str, Any]]]]


class SourceEnumerator:
    """
    Builds the list of sources for one aggregation.

    ``list_calendars`` is called with an access token and returns raw
    calendar list entries; it goes through the credential gateway so a
    stale token is refreshed the same way as for event fetches.
    """

    def __init__(
        self,
        gateway: CredentialGateway,
        list_calendars: ListCalendars,
        timeout: float = 10.0,
    ):
        self.gateway = gateway
        self.list_calendars = list_calendars
        self.timeout = timeout

    async def enumerate(
        self,
        credential: CalendarCredential,
        preferences: UserPreferences,
        refresh_slot: RefreshSlot,
        include_holidays: bool = True,
    ) -> List[CalendarSource]:
        sources = [
            CalendarSource(
                id=credential.calendar_id or "primary",
                kind=SourceKind.PRIMARY,
                display_name=PRIMARY_DISPLAY_NAME,
            )
        ]

        if include_holidays:
            holiday = resolve_holiday_calendar(preferences.holiday_country)
            sources.append(
                CalendarSource(
                    id=holiday.id,
                    kind=SourceKind.HOLIDAY,
                    display_name=HOLIDAY_DISPLAY_NAME,
                )
            )

        # Hidden secondaries are still read; the filter pipeline removes them
        sources.extend(await self._secondary_sources(credential, refresh_slot))

        logger.info(
            "Enumerated calendar sources",
            primary=1,
            holiday=int(include_holidays),
            secondary=len(sources) - 1 - int(include_holidays),
        )
        return sources

    async def _secondary_sources(
        self, credential: CalendarCredential, refresh_slot: RefreshSlot
    ) -> List[CalendarSource]:
        try:
            entries = await asyncio.wait_for(
                self.gateway.with_valid_access_token(
                    credential, refresh_slot, self.list_calendars
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            # Without a calendar list the aggregation simply has no secondaries
            logger.warning(
                "Secondary calendar discovery failed",
                error_type=type(e).__name__,
                auth_expired=isinstance(e, AuthExpiredError),
            )
            return []

        excluded = {credential.calendar_id or "primary"} | HOLIDAY_CALENDAR_IDS
        secondaries: List[CalendarSource] = []
        for entry in entries:
            calendar_id = entry.get("id")
            if not calendar_id or calendar_id in excluded or entry.get("primary"):
                continue
            if entry.get("accessRole") not in SECONDARY_ACCESS_ROLES:
                continue
            secondaries.append(
                CalendarSource(
                    id=calendar_id,
                    kind=SourceKind.SECONDARY,
                    display_name=entry.get("summary") or calendar_id,
                    color=entry.get("backgroundColor") or DEFAULT_SECONDARY_COLOR,
                    access_role=entry.get("accessRole"),
                )
            )
            if len(secondaries) == MAX_SECONDARY_SOURCES:
                break
        return secondaries
