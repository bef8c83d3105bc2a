from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from services.agenda.core.clients.base import BaseAPIClient, parse_json_error
from services.common.http_errors import ErrorCode

DEFAULT_BASE_URL = "https://www.googleapis.com"


class GoogleCalendarClient(BaseAPIClient):
    """
    Google Calendar API client.

    Only the read operations needed for aggregation are exposed: listing
    events of one calendar over a time window, and listing the calendars the
    token owner can access.
    """

    provider = "google"

    def __init__(
        self,
        access_token: str,
        user_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
    ):
        super().__init__(access_token, user_id, timeout=timeout)
        self.base_url = base_url.rstrip("/")

    def _get_default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "User-Agent": "AgendaService/1.0",
        }

    def _get_base_url(self) -> str:
        return self.base_url

    def _parse_error(
        self, response_text: str, status_code: int
    ) -> Tuple[str, ErrorCode]:
        reason, message = parse_json_error(response_text)

        if status_code == 401:
            return (
                "Google authentication failed. Please refresh your Google token.",
                ErrorCode.GOOGLE_AUTH_FAILED,
            )
        if status_code == 403:
            if "quota" in reason.lower() or "ratelimit" in reason.lower():
                return (
                    "Google API quota exceeded. Please try again later.",
                    ErrorCode.GOOGLE_QUOTA_EXCEEDED,
                )
            return (
                "Insufficient Google permissions for this calendar.",
                ErrorCode.GOOGLE_INSUFFICIENT_PERMISSIONS,
            )
        if status_code == 404:
            return "Google calendar not found.", ErrorCode.GOOGLE_NOT_FOUND
        if status_code == 429:
            return (
                "Google API rate limit exceeded. Please try again later.",
                ErrorCode.GOOGLE_RATE_LIMITED,
            )
        if status_code >= 500:
            return (
                f"Google service error: {message or status_code}",
                ErrorCode.GOOGLE_SERVICE_ERROR,
            )
        return f"Google API error: {message or status_code}", ErrorCode.GOOGLE_API_ERROR

    async def list_events(
        self,
        calendar_id: str,
        time_min: str,
        time_max: str,
        max_results: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        List events of one calendar inside ``[time_min, time_max]``.

        Recurring events are expanded into single instances and ordered by
        start time.

        Args:
            calendar_id: Calendar ID ("primary", an email or a holiday calendar id)
            time_min: RFC3339 timestamp for earliest event time
            time_max: RFC3339 timestamp for latest event time
            max_results: Maximum number of events to return
            page_token: Token for pagination

        Returns:
            Dictionary containing the events list under ``items``
        """
        params: Dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if page_token:
            params["pageToken"] = page_token

        path = f"/calendar/v3/calendars/{quote(calendar_id, safe='')}/events"
        response = await self.get(path, params=params)
        return response.json()

    async def list_calendars(
        self, min_access_role: str = "reader"
    ) -> List[Dict[str, Any]]:
        """List calendars on the user's calendar list with at least ``min_access_role``."""
        response = await self.get(
            "/calendar/v3/users/me/calendarList",
            params={"minAccessRole": min_access_role},
        )
        return response.json().get("items", [])


class GoogleCalendarProvider:
    """
    Calendar provider calls keyed by access token.

    Each call opens a short-lived ``GoogleCalendarClient`` bound to the token
    it was given, which lets the credential gateway retry with a refreshed
    token without touching shared client state.
    """

    def __init__(
        self, user_id: str, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0
    ):
        self.user_id = user_id
        self.base_url = base_url
        self.timeout = timeout

    def _client(self, access_token: str) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            access_token, self.user_id, base_url=self.base_url, timeout=self.timeout
        )

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: str,
        time_max: str,
        max_results: int,
    ) -> Dict[str, Any]:
        async with self._client(access_token) as client:
            return await client.list_events(
                calendar_id, time_min, time_max, max_results
            )

    async def list_calendars(self, access_token: str) -> List[Dict[str, Any]]:
        async with self._client(access_token) as client:
            return await client.list_calendars(min_access_role="reader")
