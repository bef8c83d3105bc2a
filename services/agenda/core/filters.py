"""
Preference-driven event filtering and display redaction.

``FILTER_PIPELINE`` is an ordered tuple of independent predicates, each
switched on by one preference. An event survives when it passes every
active predicate. Predicates only read fields already computed by the
normalizer, so their order never changes the result.

``apply_display_preferences`` is a separate pass over the survivors that
blanks fields the user chose to hide. It never adds or drops events.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from services.agenda.schemas import (
    EventStatus,
    NormalizedEvent,
    SourceKind,
    UserPreferences,
)


@dataclass(frozen=True)
class EventPredicate:
    """
    A filter that applies when ``preference`` is set to ``active_when``.

    ``keep`` returns True for events that should remain visible.
    """

    preference: str
    active_when: bool
    keep: Callable[[NormalizedEvent], bool]

    def is_active(self, preferences: UserPreferences) -> bool:
        return getattr(preferences, self.preference) == self.active_when


FILTER_PIPELINE = (
    EventPredicate("show_holidays", False, lambda e: not e.is_holiday),
    EventPredicate(
        "show_secondary_calendars",
        False,
        lambda e: e.source_kind != SourceKind.SECONDARY,
    ),
    EventPredicate("show_all_day_events", False, lambda e: not e.is_all_day),
    EventPredicate("show_past_events", False, lambda e: not e.is_past),
    EventPredicate("show_ongoing_events", False, lambda e: not e.is_ongoing),
    EventPredicate("show_upcoming_events", False, lambda e: not e.is_upcoming),
    EventPredicate(
        "hide_declined_events", True, lambda e: e.attendance_status != "declined"
    ),
    EventPredicate(
        "hide_cancelled_events", True, lambda e: e.status != EventStatus.CANCELLED
    ),
)


def active_predicates(
    preferences: UserPreferences,
    pipeline: Sequence[EventPredicate] = FILTER_PIPELINE,
) -> List[EventPredicate]:
    return [predicate for predicate in pipeline if predicate.is_active(preferences)]


def filter_preferences(preferences: UserPreferences) -> Dict[str, bool]:
    """The filter-relevant preference values, for reporting in summaries."""
    return {
        predicate.preference: getattr(preferences, predicate.preference)
        for predicate in FILTER_PIPELINE
    }


def apply_filters(
    events: Sequence[NormalizedEvent],
    preferences: UserPreferences,
    pipeline: Sequence[EventPredicate] = FILTER_PIPELINE,
) -> List[NormalizedEvent]:
    """Keep the events that pass every active predicate, preserving order."""
    active = active_predicates(preferences, pipeline)
    return [event for event in events if all(p.keep(event) for p in active)]


def apply_display_preferences(
    events: Sequence[NormalizedEvent], preferences: UserPreferences
) -> List[NormalizedEvent]:
    """Return copies of ``events`` with hidden fields blanked and display settings stamped."""
    update: Dict[str, object] = {
        "time_format": preferences.time_format,
        "user_timezone": preferences.timezone,
    }
    if not preferences.show_event_descriptions:
        update["description"] = ""
    if not preferences.show_event_locations:
        update["location"] = ""
    if not preferences.show_attendee_count:
        update["attendee_count"] = 0
    if not preferences.use_calendar_colors:
        update["source_color"] = None
    return [event.model_copy(update=update) for event in events]
