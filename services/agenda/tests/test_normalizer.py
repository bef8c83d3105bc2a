"""
Unit tests for Google Calendar event normalization.
"""

from datetime import datetime, timedelta, timezone

import pytest

from services.agenda.core.normalizer import (
    UNTITLED_EVENT,
    classify,
    effective_start,
    normalize_event,
)
from services.agenda.schemas import EventStatus, SourceKind
from services.agenda.tests.factories import (
    NOW,
    PRIMARY,
    TEAM,
    US_HOLIDAYS,
    make_all_day_event,
    make_raw_event,
)


def temporal_flags(event):
    return (event.is_past, event.is_ongoing, event.is_upcoming)


class TestClassify:
    @pytest.mark.parametrize(
        "start_offset, end_offset, expected",
        [
            (timedelta(hours=-3), timedelta(hours=-1), (True, False, False)),
            (timedelta(hours=-1), timedelta(hours=1), (False, True, False)),
            (timedelta(hours=1), timedelta(hours=2), (False, False, True)),
            (timedelta(hours=-1), timedelta(0), (True, False, False)),
            (timedelta(0), timedelta(hours=1), (False, True, False)),
        ],
    )
    def test_exactly_one_flag(self, start_offset, end_offset, expected):
        flags = classify(NOW + start_offset, NOW + end_offset, NOW)
        assert flags == expected
        assert sum(flags) == 1

    def test_end_before_start_is_past(self):
        assert classify(NOW + timedelta(hours=2), NOW + timedelta(hours=1), NOW) == (
            True,
            False,
            False,
        )

    def test_zero_length_future_event_is_past(self):
        start = NOW + timedelta(hours=1)
        assert classify(start, start, NOW) == (True, False, False)


class TestNormalizeEvent:
    """Tests for normalize_event."""

    def test_timed_event(self):
        raw = make_raw_event(
            "evt-1",
            NOW + timedelta(hours=2),
            description="Quarterly planning",
            location="Room 4",
            htmlLink="https://calendar.google.com/event?eid=1",
            organizer={"email": "boss@example.com", "displayName": "Boss"},
            created="2024-03-01T09:00:00Z",
        )

        event = normalize_event(raw, PRIMARY, NOW)

        assert event.id == "evt-1"
        assert event.title == "Event evt-1"
        assert event.description == "Quarterly planning"
        assert event.location == "Room 4"
        assert event.start == NOW + timedelta(hours=2)
        assert event.is_all_day is False
        assert temporal_flags(event) == (False, False, True)
        assert event.external_link == "https://calendar.google.com/event?eid=1"
        assert event.organizer.email == "boss@example.com"
        assert event.created == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_provenance_comes_from_source(self):
        event = normalize_event(make_raw_event("evt-1", NOW), TEAM, NOW)

        assert event.source_kind == SourceKind.SECONDARY
        assert event.source_id == "team@group.calendar.google.com"
        assert event.source_name == "Team"
        assert event.source_color == "#9fe1e7"
        assert event.is_holiday is False

    def test_holiday_all_day_event(self):
        raw = make_all_day_event("hol-1", "2024-03-17", "2024-03-18")

        event = normalize_event(raw, US_HOLIDAYS, NOW)

        assert event.is_all_day is True
        assert event.is_holiday is True
        assert event.start == datetime(2024, 3, 17, tzinfo=timezone.utc)
        assert temporal_flags(event) == (False, False, True)

    def test_all_day_event_today_is_ongoing(self):
        raw = make_all_day_event("today", "2024-03-15", "2024-03-16")

        event = normalize_event(raw, PRIMARY, NOW)

        assert temporal_flags(event) == (False, True, False)

    def test_defaults_for_sparse_event(self):
        raw = {"id": "sparse", "start": {"dateTime": "2024-03-16T10:00:00Z"}}

        event = normalize_event(raw, PRIMARY, NOW)

        assert event.title == UNTITLED_EVENT
        assert event.description == ""
        assert event.location == ""
        assert event.end == event.start
        assert event.status == EventStatus.CONFIRMED
        assert event.attendee_count == 0
        assert event.organizer is None
        assert event.attendance_status is None
        assert temporal_flags(event) == (True, False, False)

    def test_missing_start_uses_now(self):
        event = normalize_event({"id": "no-start"}, PRIMARY, NOW)

        assert event.start == NOW
        assert sum(temporal_flags(event)) == 1

    def test_naive_datetime_is_utc(self):
        raw = {
            "id": "naive",
            "start": {"dateTime": "2024-03-16T10:00:00"},
            "end": {"dateTime": "2024-03-16T11:00:00"},
        }

        event = normalize_event(raw, PRIMARY, NOW)

        assert event.start.tzinfo is not None
        assert event.start == datetime(2024, 3, 16, 10, tzinfo=timezone.utc)

    def test_missing_id_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_event(make_raw_event("", NOW), PRIMARY, NOW)

    def test_cancelled_and_unknown_status(self):
        cancelled = normalize_event(
            make_raw_event("c", NOW, status="cancelled"), PRIMARY, NOW
        )
        unknown = normalize_event(
            make_raw_event("u", NOW, status="weird"), PRIMARY, NOW
        )

        assert cancelled.status == EventStatus.CANCELLED
        assert unknown.status == EventStatus.CONFIRMED

    def test_attendance_status_from_self_attendee(self):
        raw = make_raw_event(
            "evt-1",
            NOW + timedelta(hours=1),
            attendees=[
                {"email": "other@example.com", "responseStatus": "accepted"},
                {"email": "me@example.com", "self": True, "responseStatus": "declined"},
            ],
        )

        event = normalize_event(raw, PRIMARY, NOW)

        assert event.attendance_status == "declined"
        assert event.attendee_count == 2

    def test_attendance_status_absent_without_self_attendee(self):
        raw = make_raw_event(
            "evt-1",
            NOW + timedelta(hours=1),
            attendees=[{"email": "other@example.com", "responseStatus": "declined"}],
        )

        assert normalize_event(raw, PRIMARY, NOW).attendance_status is None


class TestEffectiveStart:
    def test_date_and_datetime_are_comparable(self):
        timed = make_raw_event("t", NOW)
        all_day = make_all_day_event("d", "2024-03-14", "2024-03-15")

        assert effective_start(all_day) < effective_start(timed)

    def test_unparseable_start_sorts_last(self):
        broken = {"id": "x", "start": {"dateTime": "not-a-date"}}
        missing = {"id": "y"}
        timed = make_raw_event("t", NOW + timedelta(days=365))

        assert effective_start(timed) < effective_start(broken)
        assert effective_start(timed) < effective_start(missing)
