from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceKind(str, Enum):
    PRIMARY = "primary"
    HOLIDAY = "holiday"
    SECONDARY = "secondary"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class TimeFormat(str, Enum):
    TWELVE_HOUR = "12h"
    TWENTY_FOUR_HOUR = "24h"


# Stored account data (owned by the user service)
class CalendarCredential(BaseModel):
    """OAuth credential for the user's calendar provider account."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    calendar_id: str = "primary"

    @field_validator("calendar_id", mode="before")
    @classmethod
    def default_calendar_id(cls, v: Optional[str]) -> str:
        return v or "primary"


class UserPreferences(BaseModel):
    """Per-user calendar display preferences."""

    show_on_dashboard: bool = True
    max_events: int = Field(10, ge=1)
    days_to_show: int = Field(7, ge=1)
    show_holidays: bool = True
    show_secondary_calendars: bool = True
    show_all_day_events: bool = True
    show_past_events: bool = False
    show_ongoing_events: bool = True
    show_upcoming_events: bool = True
    holiday_country: str = "US"
    show_event_descriptions: bool = True
    show_event_locations: bool = True
    show_attendee_count: bool = False
    time_format: TimeFormat = TimeFormat.TWELVE_HOUR
    timezone: str = "UTC"
    hide_declined_events: bool = True
    hide_cancelled_events: bool = True
    use_calendar_colors: bool = True
    show_event_reminders: bool = False


class CalendarAccount(BaseModel):
    """Everything the credential store knows about a user's calendar."""

    enabled: bool = False
    credential: Optional[CalendarCredential] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    @property
    def is_configured(self) -> bool:
        return bool(
            self.enabled
            and self.credential is not None
            and self.credential.access_token
        )


# Aggregation inputs
class CalendarSource(BaseModel):
    id: str
    kind: SourceKind
    display_name: str
    color: Optional[str] = None
    access_role: Optional[str] = None

    @property
    def is_holiday(self) -> bool:
        return self.kind == SourceKind.HOLIDAY


class TimeWindow(BaseModel):
    time_min: datetime
    time_max: datetime


class AggregationQuery(BaseModel):
    days_to_show: int = Field(..., ge=1, le=90)
    max_results: int = Field(..., ge=1, le=250)
    include_holidays: bool = True


class HolidayCalendar(BaseModel):
    id: str
    country: str
    country_code: str
    language: str
    name: str


# Normalized output
class EventOrganizer(BaseModel):
    email: Optional[str] = None
    display_name: Optional[str] = None


class NormalizedEvent(BaseModel):
    id: str
    title: str
    description: str = ""
    location: str = ""
    start: datetime
    end: datetime
    is_all_day: bool = False
    status: EventStatus = EventStatus.CONFIRMED
    source_kind: SourceKind
    source_id: str
    source_name: str
    source_color: Optional[str] = None
    is_holiday: bool = False
    is_past: bool = False
    is_ongoing: bool = False
    is_upcoming: bool = False
    attendee_count: int = 0
    organizer: Optional[EventOrganizer] = None
    external_link: Optional[str] = None
    attendance_status: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    # Display annotations stamped by the redaction pass
    time_format: Optional[TimeFormat] = None
    user_timezone: Optional[str] = None


class CalendarCounts(BaseModel):
    primary: int = 0
    holiday: int = 0
    secondary: int = 0


class EventSummary(BaseModel):
    total: int = 0
    upcoming: int = 0
    ongoing: int = 0
    past: int = 0
    holidays: int = 0
    all_day: int = 0
    by_calendar: CalendarCounts = Field(default_factory=CalendarCounts)


class FilterReport(BaseModel):
    applied: bool = False
    total_before_filters: int
    total_after_filters: int
    preferences: Dict[str, bool]


class FilteredSummary(EventSummary):
    filters: FilterReport


class TimeRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(..., alias="from")
    to: datetime
    days: int


class DisplayPreferences(BaseModel):
    time_format: TimeFormat
    timezone: str
    holiday_country: str


class AggregationResult(BaseModel):
    events: List[NormalizedEvent]
    raw_summary: EventSummary
    filtered_summary: FilteredSummary
    time_range: TimeRange
    preferences: DisplayPreferences


# API envelopes
class AgendaApiResponse(BaseModel):
    success: bool
    data: AggregationResult
    request_id: str


class HolidayCalendarListResponse(BaseModel):
    success: bool = True
    data: List[HolidayCalendar]
    request_id: str


class CalendarSettingsView(BaseModel):
    enabled: bool
    calendar_id: str
    preferences: UserPreferences
    has_tokens: bool


class CalendarSettingsResponse(BaseModel):
    success: bool = True
    data: CalendarSettingsView
    request_id: str
