"""
Tests for the calendar API endpoints.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from services.agenda.app.main import app
from services.agenda.core.aggregator import CalendarAggregator
from services.agenda.core.credential_gateway import TokenRefreshError
from services.agenda.core.dependencies import (
    get_calendar_aggregator,
    get_credential_store,
)
from services.agenda.schemas import CalendarAccount, UserPreferences
from services.agenda.tests.factories import (
    FakeCalendarProvider,
    FakeCredentialStore,
    make_raw_event,
)
from services.common.http_errors import ProviderError


@pytest.fixture
def client():
    """Create a test client for the FastAPI application."""
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Create authentication headers with X-User-Id and API key."""
    return {"X-User-Id": "test_user", "X-API-Key": "test-frontend-agenda-key"}


@pytest.fixture
def provider():
    soon = datetime.now(timezone.utc) + timedelta(hours=1)
    return FakeCalendarProvider(
        {
            "primary": [
                make_raw_event("p1", soon, location="HQ"),
                make_raw_event("p2", soon + timedelta(hours=2)),
            ],
        }
    )


@pytest.fixture
def override_dependencies(store, refresher, provider):
    """Route the endpoints to in-memory fakes."""
    aggregator = CalendarAggregator(store, refresher, provider)
    app.dependency_overrides[get_credential_store] = lambda: store
    app.dependency_overrides[get_calendar_aggregator] = lambda: aggregator
    yield aggregator
    app.dependency_overrides.clear()


class TestGetCalendarEvents:
    """Tests for GET /v1/calendar/events."""

    def test_returns_merged_events(self, client, auth_headers, override_dependencies):
        response = client.get("/v1/calendar/events", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["request_id"] == response.headers["X-Request-Id"]
        data = body["data"]
        assert [e["id"] for e in data["events"]] == ["p1", "p2"]
        assert data["events"][0]["source_kind"] == "primary"
        assert data["events"][0]["source_name"] == "Primary Calendar"
        assert data["raw_summary"]["total"] == 2
        assert data["filtered_summary"]["filters"]["total_after_filters"] == 2
        assert set(data["time_range"]) == {"from", "to", "days"}
        assert data["time_range"]["days"] == 7
        assert data["preferences"]["time_format"] == "12h"

    def test_request_id_is_propagated(
        self, client, auth_headers, override_dependencies
    ):
        headers = {**auth_headers, "X-Request-Id": "req-123"}

        response = client.get("/v1/calendar/events", headers=headers)

        assert response.headers["X-Request-Id"] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_query_overrides_preferences(
        self, client, auth_headers, override_dependencies
    ):
        response = client.get(
            "/v1/calendar/events",
            params={"days_to_show": 30, "max_results": 1},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["time_range"]["days"] == 30
        assert [e["id"] for e in data["events"]] == ["p1"]

    def test_stored_preference_above_cap_is_clamped(
        self, client, auth_headers, override_dependencies, store
    ):
        store.account.preferences = UserPreferences(days_to_show=365, max_events=1000)

        response = client.get("/v1/calendar/events", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["time_range"]["days"] == 90

    def test_holidays_can_be_excluded_by_query(
        self, client, auth_headers, override_dependencies, provider
    ):
        response = client.get(
            "/v1/calendar/events",
            params={"include_holidays": "false"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        calendars = {calendar for _, calendar in provider.calls}
        assert not any("#holiday@" in calendar for calendar in calendars)

    def test_not_configured_returns_400(
        self, client, auth_headers, override_dependencies, store
    ):
        store.account = CalendarAccount()

        response = client.get("/v1/calendar/events", headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["type"] == "configuration_error"
        assert body["message"] == "Calendar not configured or not enabled"
        assert body["details"]["code"] == "CALENDAR_NOT_CONFIGURED"

    def test_expired_authorization_returns_401(
        self, client, auth_headers, override_dependencies, provider, refresher
    ):
        provider.rejected_tokens = {"stale-token"}
        refresher.refresh.side_effect = TokenRefreshError("invalid_grant")

        response = client.get("/v1/calendar/events", headers=auth_headers)

        assert response.status_code == 401
        body = response.json()
        assert body["details"]["code"] == "TOKEN_EXPIRED"
        assert body["details"]["reconnect_required"] is True

    def test_primary_failure_is_sanitized(
        self, client, auth_headers, override_dependencies, provider
    ):
        provider.events_by_calendar["primary"] = ProviderError(
            "Backend Error",
            provider="google",
            upstream_status=500,
            response_body='{"error": "internal detail sk-secret"}',
        )

        response = client.get("/v1/calendar/events", headers=auth_headers)

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Failed to load calendar events"
        assert body["details"]["code"] == "PRIMARY_FETCH_FAILED"
        assert "sk-secret" not in response.text
        assert "Backend Error" not in response.text

    def test_unexpected_error_is_sanitized(self, auth_headers, store):
        aggregator = MagicMock()
        aggregator.aggregate = AsyncMock(side_effect=RuntimeError("password=hunter2"))
        app.dependency_overrides[get_credential_store] = lambda: store
        app.dependency_overrides[get_calendar_aggregator] = lambda: aggregator
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.get("/v1/calendar/events", headers=auth_headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"
        assert "hunter2" not in response.text

    def test_deadline_returns_504(
        self, client, auth_headers, store, patch_settings
    ):
        patch_settings.AGGREGATION_TIMEOUT = 0.05
        patch_settings.DISCONNECT_POLL_INTERVAL = 0.01

        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        aggregator = MagicMock()
        aggregator.aggregate = AsyncMock(side_effect=hang)
        app.dependency_overrides[get_credential_store] = lambda: store
        app.dependency_overrides[get_calendar_aggregator] = lambda: aggregator
        try:
            response = client.get("/v1/calendar/events", headers=auth_headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 504
        assert response.json()["details"]["code"] == "SERVICE_TIMEOUT"

    @pytest.mark.parametrize(
        "params",
        [
            {"days_to_show": 0},
            {"days_to_show": 91},
            {"max_results": 0},
            {"max_results": 251},
            {"days_to_show": "soon"},
        ],
    )
    def test_invalid_query_returns_422_without_store_lookup(
        self, client, auth_headers, params
    ):
        store = MagicMock()
        store.get = AsyncMock()
        aggregator = MagicMock()
        aggregator.aggregate = AsyncMock()
        app.dependency_overrides[get_credential_store] = lambda: store
        app.dependency_overrides[get_calendar_aggregator] = lambda: aggregator
        try:
            response = client.get(
                "/v1/calendar/events", params=params, headers=auth_headers
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 422
        assert response.json()["details"]["code"] == "VALIDATION_FAILED"
        store.get.assert_not_awaited()
        aggregator.aggregate.assert_not_awaited()

    def test_missing_api_key_returns_401(self, client, override_dependencies):
        response = client.get("/v1/calendar/events", headers={"X-User-Id": "test_user"})

        assert response.status_code == 401

    def test_invalid_api_key_returns_403(self, client, override_dependencies):
        response = client.get(
            "/v1/calendar/events",
            headers={"X-User-Id": "test_user", "X-API-Key": "wrong-key"},
        )

        assert response.status_code == 403
        assert response.json()["details"]["code"] == "PERMISSION_DENIED"

    def test_missing_user_id_returns_422(self, client, override_dependencies):
        response = client.get(
            "/v1/calendar/events", headers={"X-API-Key": "test-frontend-agenda-key"}
        )

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "X-User-Id"


class TestHolidayCalendarsEndpoint:
    def test_lists_supported_countries(self, client, auth_headers):
        response = client.get("/v1/calendar/holiday-calendars", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 15
        us = next(c for c in data if c["country_code"] == "US")
        assert us["id"] == "en.usa#holiday@group.v.calendar.google.com"


class TestCalendarSettingsEndpoint:
    def test_returns_settings_without_tokens(
        self, client, auth_headers, override_dependencies
    ):
        response = client.get("/v1/calendar/settings", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["enabled"] is True
        assert data["calendar_id"] == "primary"
        assert data["has_tokens"] is True
        assert data["preferences"]["holiday_country"] == "US"
        assert "stale-token" not in response.text
        assert "refresh-token" not in response.text

    def test_unconfigured_user_has_no_tokens(self, client, auth_headers):
        app.dependency_overrides[get_credential_store] = lambda: FakeCredentialStore()
        try:
            response = client.get("/v1/calendar/settings", headers=auth_headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["enabled"] is False
        assert data["has_tokens"] is False


class TestHealthEndpoints:
    def test_health_reports_configuration(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "agenda-service"

    def test_ready(self, client):
        assert client.get("/ready").json()["status"] == "ok"
