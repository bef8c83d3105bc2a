"""
Tests for per-source event fetching and its failure policy.

The primary calendar is required: any failure other than expired
authorization becomes PrimaryFetchFailedError. Holiday and secondary
calendars are optional: failures and timeouts yield no events.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.agenda.core.credential_gateway import CredentialGateway, RefreshSlot
from services.agenda.core.exceptions import (
    AuthExpiredError,
    PrimaryFetchFailedError,
    UpstreamAuthError,
)
from services.agenda.core.fetcher import EventFetcher
from services.agenda.schemas import TimeWindow
from services.agenda.tests.factories import (
    NOW,
    PRIMARY,
    TEAM,
    US_HOLIDAYS,
    make_raw_event,
)
from services.common.http_errors import ProviderError

WINDOW = TimeWindow(time_min=NOW, time_max=NOW + timedelta(days=7))


@pytest.fixture
def gateway(store, refresher):
    return CredentialGateway("user-1", store, refresher)


class TestEventFetcher:
    @pytest.mark.asyncio
    async def test_fetch_passes_window_and_limit(self, gateway, credential):
        list_events = AsyncMock(return_value={"items": [make_raw_event("a", NOW)]})
        fetcher = EventFetcher(gateway, list_events)

        items = await fetcher.fetch(PRIMARY, WINDOW, 20, credential, RefreshSlot())

        assert [item["id"] for item in items] == ["a"]
        list_events.assert_awaited_once_with(
            "stale-token",
            "primary",
            WINDOW.time_min.isoformat(),
            WINDOW.time_max.isoformat(),
            20,
        )

    @pytest.mark.asyncio
    async def test_fetch_without_items_returns_empty_list(self, gateway, credential):
        fetcher = EventFetcher(gateway, AsyncMock(return_value={}))

        assert await fetcher.fetch(PRIMARY, WINDOW, 20, credential, RefreshSlot()) == []


class TestPrimaryFetch:
    @pytest.mark.asyncio
    async def test_provider_error_is_fatal(self, gateway, credential):
        error = ProviderError("Backend Error", provider="google", upstream_status=500)
        fetcher = EventFetcher(gateway, AsyncMock(side_effect=error))

        with pytest.raises(PrimaryFetchFailedError) as exc_info:
            await fetcher.fetch_primary(PRIMARY, WINDOW, 20, credential, RefreshSlot())

        assert exc_info.value.cause is error
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Failed to load calendar events"

    @pytest.mark.asyncio
    async def test_timeout_is_fatal(self, gateway, credential):
        async def hang(*args):
            await asyncio.sleep(1)

        fetcher = EventFetcher(gateway, hang, timeout=0.01)

        with pytest.raises(PrimaryFetchFailedError):
            await fetcher.fetch_primary(PRIMARY, WINDOW, 20, credential, RefreshSlot())

    @pytest.mark.asyncio
    async def test_auth_expiry_propagates_unchanged(self, gateway, credential):
        credential.refresh_token = None
        list_events = AsyncMock(side_effect=UpstreamAuthError("Invalid Credentials"))
        fetcher = EventFetcher(gateway, list_events)

        with pytest.raises(AuthExpiredError):
            await fetcher.fetch_primary(PRIMARY, WINDOW, 20, credential, RefreshSlot())


class TestOptionalFetch:
    @pytest.mark.asyncio
    async def test_holiday_failure_yields_no_events(self, gateway, credential):
        error = ProviderError("Not Found", provider="google")
        list_events = AsyncMock(side_effect=error)
        fetcher = EventFetcher(gateway, list_events)

        events = await fetcher.fetch_optional(
            US_HOLIDAYS, WINDOW, 20, credential, RefreshSlot()
        )

        assert events == []

    @pytest.mark.asyncio
    async def test_secondary_timeout_yields_no_events(self, gateway, credential):
        async def hang(*args):
            await asyncio.sleep(1)

        fetcher = EventFetcher(gateway, hang, timeout=0.01)

        assert await fetcher.fetch_optional(
            TEAM, WINDOW, 20, credential, RefreshSlot()
        ) == []

    @pytest.mark.asyncio
    async def test_auth_expiry_on_optional_source_is_not_fatal(
        self, gateway, credential
    ):
        credential.refresh_token = None
        list_events = AsyncMock(side_effect=UpstreamAuthError("Invalid Credentials"))
        fetcher = EventFetcher(gateway, list_events)

        assert await fetcher.fetch_optional(
            TEAM, WINDOW, 20, credential, RefreshSlot()
        ) == []

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self, gateway, credential):
        started = asyncio.Event()

        async def hang(*args):
            started.set()
            await asyncio.sleep(10)

        fetcher = EventFetcher(gateway, hang, timeout=20)
        task = asyncio.ensure_future(
            fetcher.fetch_optional(TEAM, WINDOW, 20, credential, RefreshSlot())
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
