"""
API key authentication and authorization for the Agenda Service.

The frontend is the only caller; its key grants read access to the merged
calendar view and calendar settings.
"""

from typing import Any, Callable, Dict, List

from services.agenda.core.settings import get_settings
from services.common.api_key_auth import APIKeyConfig, make_service_permission_required

API_KEY_CONFIGS: Dict[str, APIKeyConfig] = {
    "api_frontend_agenda_key": APIKeyConfig(
        client="frontend",
        service="agenda-service-access",
        permissions=["read_calendar", "read_calendar_settings"],
        settings_key="api_frontend_agenda_key",
    ),
}


def service_permission_required(required_permissions: List[str]) -> Callable[..., Any]:
    """FastAPI dependency factory requiring an API key with ``required_permissions``."""
    return make_service_permission_required(
        required_permissions, API_KEY_CONFIGS, get_settings
    )
