"""
Test configuration and fixtures for Agenda Service tests.

Provider and credential store calls are replaced with in-memory fakes so no
test talks to Google or the User Management Service.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.agenda.core.credential_gateway import RefreshedToken
from services.agenda.schemas import (
    CalendarAccount,
    CalendarCredential,
    UserPreferences,
)
from services.agenda.tests.factories import NOW, FakeCredentialStore


@pytest.fixture(autouse=True)
def patch_settings():
    """Patch the _settings global variable to return test settings."""
    import services.agenda.core.settings as agenda_settings

    test_settings = agenda_settings.Settings(
        api_frontend_agenda_key="test-frontend-agenda-key",
        api_agenda_user_key="test-agenda-user-key",
        GOOGLE_CLIENT_ID="test-client-id",
        GOOGLE_CLIENT_SECRET="test-client-secret",
        USER_SERVICE_URL="http://user-service.test",
        GOOGLE_API_BASE_URL="https://calendar.test",
        GOOGLE_TOKEN_URL="https://oauth.test/token",
    )

    # Directly set the singleton instead of using monkeypatch
    agenda_settings._settings = test_settings
    yield test_settings
    agenda_settings._settings = None


@pytest.fixture
def credential():
    return CalendarCredential(
        access_token="stale-token",
        refresh_token="refresh-token",
        expiry=NOW - timedelta(minutes=5),
        calendar_id="primary",
    )


@pytest.fixture
def preferences():
    return UserPreferences()


@pytest.fixture
def account(credential, preferences):
    return CalendarAccount(enabled=True, credential=credential, preferences=preferences)


@pytest.fixture
def store(account):
    return FakeCredentialStore(account)


@pytest.fixture
def refresher():
    """OAuth refresher that always issues ``fresh-token``."""
    mock = AsyncMock()
    mock.refresh = AsyncMock(
        return_value=RefreshedToken(
            access_token="fresh-token", expiry=NOW + timedelta(hours=1)
        )
    )
    return mock
