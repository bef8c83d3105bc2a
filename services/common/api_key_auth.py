"""
Shared API key authentication for service-to-service and frontend calls.

A service declares its accepted keys as ``APIKeyConfig`` entries (which
settings attribute holds the key, which client presents it, which
permissions it grants) and builds FastAPI dependencies from them with
``make_service_permission_required``.
"""

import hmac
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request

from services.common.http_errors import AuthError, ErrorCode
from services.common.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class APIKeyConfig:
    client: str
    service: str
    permissions: List[str]
    settings_key: str  # settings attribute holding the key value


def get_api_key_from_request(request: Request) -> Optional[str]:
    """Extract the API key from ``X-API-Key`` or an ``Authorization: Bearer`` header."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :]
    return None


def resolve_api_key(
    api_key: str,
    api_key_configs: Dict[str, APIKeyConfig],
    get_settings: Callable[[], Any],
) -> Optional[APIKeyConfig]:
    """Return the config whose configured key matches ``api_key``."""
    settings = get_settings()
    for config in api_key_configs.values():
        expected = getattr(settings, config.settings_key, None)
        if not expected:
            logger.warning("API key not configured", settings_key=config.settings_key)
            continue
        if hmac.compare_digest(expected.encode(), api_key.encode()):
            return config
    return None


def make_service_permission_required(
    required_permissions: List[str],
    api_key_configs: Dict[str, APIKeyConfig],
    get_settings: Callable[[], Any],
) -> Callable[[Request], Any]:
    """
    Build a FastAPI dependency that authenticates the caller's API key and
    checks it grants every permission in ``required_permissions``.

    The dependency returns the client name and stores it on ``request.state``.
    A missing key yields 401, an unknown key or missing permission 403.
    """

    async def dependency(request: Request) -> str:
        api_key = get_api_key_from_request(request)
        if not api_key:
            logger.warning("Missing API key in request headers", path=request.url.path)
            raise AuthError(message="API key required")

        config = resolve_api_key(api_key, api_key_configs, get_settings)
        if config is None:
            logger.warning("Invalid API key", api_key_prefix=api_key[:4])
            raise AuthError(
                message="Invalid API key",
                code=ErrorCode.PERMISSION_DENIED,
                status_code=403,
            )

        missing = [
            perm for perm in required_permissions if perm not in config.permissions
        ]
        if missing:
            logger.warning(
                "Permission denied",
                client=config.client,
                required_permissions=required_permissions,
                missing_permissions=missing,
            )
            raise AuthError(
                message=f"Insufficient permissions. Required: {required_permissions}",
                code=ErrorCode.PERMISSION_DENIED,
                status_code=403,
            )

        request.state.client_name = config.client
        return config.client

    return dependency
