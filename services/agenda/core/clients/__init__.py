from services.agenda.core.clients.base import BaseAPIClient
from services.agenda.core.clients.google import (
    GoogleCalendarClient,
    GoogleCalendarProvider,
)

__all__ = ["BaseAPIClient", "GoogleCalendarClient", "GoogleCalendarProvider"]
