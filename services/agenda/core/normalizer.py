"""
Normalization of raw Google Calendar events into ``NormalizedEvent``.

Temporal flags are computed against a ``now`` captured once per
aggregation, so every event in a response is classified against the same
instant.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from services.agenda.schemas import (
    CalendarSource,
    EventOrganizer,
    EventStatus,
    NormalizedEvent,
)
from services.common.logging_config import get_logger

logger = get_logger(__name__)

UNTITLED_EVENT = "(No title)"

# Sort key for events without a parseable start: after everything else
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _parse_iso_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp; naive values are taken as UTC."""
    if not dt_str:
        return None
    try:
        dt = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_google_datetime(
    dt_data: Optional[Dict[str, Any]],
) -> Tuple[Optional[datetime], bool]:
    """
    Parse a Google ``start``/``end`` object.

    Returns ``(datetime, is_date_only)``. A ``date`` value (no time of day)
    is an all-day boundary and is read as midnight UTC.
    """
    if not dt_data:
        return None, False

    date_str = dt_data.get("date")
    if date_str and not dt_data.get("dateTime"):
        try:
            return datetime.fromisoformat(date_str).replace(tzinfo=timezone.utc), True
        except ValueError:
            return None, True

    return _parse_iso_datetime(dt_data.get("dateTime")), False


def effective_start(raw_event: Dict[str, Any]) -> datetime:
    """Start instant used to order raw events before normalization."""
    start, _ = _parse_google_datetime(raw_event.get("start"))
    return start or _FAR_FUTURE


def classify(start: datetime, end: datetime, now: datetime) -> Tuple[bool, bool, bool]:
    """
    Return ``(is_past, is_ongoing, is_upcoming)``; exactly one is true.

    Events with ``end <= start`` are zero-length or malformed and count as past.
    """
    if end <= start or end <= now:
        return True, False, False
    if start <= now:
        return False, True, False
    return False, False, True


def _attendance_status(attendees: Any) -> Optional[str]:
    # Google marks the authenticated user's own attendee entry with "self"
    for attendee in attendees or []:
        if isinstance(attendee, dict) and attendee.get("self"):
            return attendee.get("responseStatus")
    return None


def _status(raw_status: Optional[str]) -> EventStatus:
    try:
        return EventStatus(raw_status or EventStatus.CONFIRMED.value)
    except ValueError:
        logger.debug("Unknown event status, treating as confirmed", status=raw_status)
        return EventStatus.CONFIRMED


def normalize_event(
    raw_event: Dict[str, Any], source: CalendarSource, now: datetime
) -> NormalizedEvent:
    """
    Convert a raw Google Calendar event into a ``NormalizedEvent``.

    Provenance (kind, name, colour, holiday flag) comes from ``source``.

    Raises:
        ValueError: If the event has no id
    """
    event_id = raw_event.get("id")
    if not event_id:
        raise ValueError("Missing required field 'id' in Google Calendar event")

    start, is_all_day = _parse_google_datetime(raw_event.get("start"))
    end, _ = _parse_google_datetime(raw_event.get("end"))
    if start is None:
        logger.warning("Event has no usable start time", event_id=event_id)
        start = now
    if end is None:
        end = start

    is_past, is_ongoing, is_upcoming = classify(start, end, now)

    organizer = None
    raw_organizer = raw_event.get("organizer")
    if isinstance(raw_organizer, dict):
        organizer = EventOrganizer(
            email=raw_organizer.get("email"),
            display_name=raw_organizer.get("displayName"),
        )

    attendees = raw_event.get("attendees") or []

    return NormalizedEvent(
        id=event_id,
        title=raw_event.get("summary") or UNTITLED_EVENT,
        description=raw_event.get("description") or "",
        location=raw_event.get("location") or "",
        start=start,
        end=end,
        is_all_day=is_all_day,
        status=_status(raw_event.get("status")),
        source_kind=source.kind,
        source_id=source.id,
        source_name=source.display_name,
        source_color=source.color,
        is_holiday=source.is_holiday,
        is_past=is_past,
        is_ongoing=is_ongoing,
        is_upcoming=is_upcoming,
        attendee_count=len(attendees),
        organizer=organizer,
        external_link=raw_event.get("htmlLink"),
        attendance_status=_attendance_status(attendees),
        created=_parse_iso_datetime(raw_event.get("created")),
        updated=_parse_iso_datetime(raw_event.get("updated")),
    )
