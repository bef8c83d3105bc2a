"""
Centralized logging configuration for the agenda services.

Every service configures structlog through ``setup_service_logging`` during
startup and obtains loggers with ``get_logger(__name__)``. Request and user
identifiers are carried in context variables populated by the request
logging middleware, so any log line emitted while serving a request is
tagged with them.

Usage:
    from services.common.logging_config import setup_service_logging

    setup_service_logging(service_name="agenda", log_level="INFO", log_format="json")
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Optional

import structlog
from fastapi import Request, Response

UNINITIALIZED_REQUEST_ID = "uninitialized"
ANONYMOUS_USER_ID = "anonymous"

request_id_var: ContextVar[str] = ContextVar(
    "request_id", default=UNINITIALIZED_REQUEST_ID
)
user_id_var: ContextVar[str] = ContextVar("user_id", default=ANONYMOUS_USER_ID)

# Keys rendered in the text line header rather than as key=value pairs
_HEADER_KEYS = (
    "timestamp",
    "level",
    "logger",
    "event",
    "service",
    "request_id",
    "user_id",
)

_LEVEL_MARKERS = {
    "DEBUG": "🔍",
    "INFO": "ℹ️",
    "WARNING": "⚠️",
    "ERROR": "❌",
    "CRITICAL": "🔥",
}


def current_request_id() -> Optional[str]:
    """Return the request id bound to the running request, if any."""
    request_id = request_id_var.get()
    if not request_id or request_id == UNINITIALIZED_REQUEST_ID:
        return None
    return request_id


def add_request_context(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Attach request and user ids from the context variables."""
    request_id = current_request_id()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    user_id = user_id_var.get()
    if user_id and user_id != ANONYMOUS_USER_ID:
        event_dict.setdefault("user_id", user_id)
    return event_dict


def add_service_context(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Derive the service name from a ``services.<name>.*`` logger name."""
    logger_name = event_dict.get("logger", "")
    parts = logger_name.split(".")
    if len(parts) >= 2 and parts[0] == "services":
        event_dict.setdefault("service", parts[1])
    return event_dict


class TextRenderer:
    """Human readable single-line renderer used when LOG_FORMAT is ``text``."""

    def __init__(self, service_name: str, max_value_length: int = 150):
        self.service_name = service_name
        self.max_value_length = max_value_length

    def _format_value(self, value: Any) -> str:
        if isinstance(value, (str, int, float, bool)) or value is None:
            return str(value)
        text = str(value)
        if len(text) > self.max_value_length:
            return text[: self.max_value_length] + "..."
        return text

    def __call__(
        self,
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> str:
        level = str(event_dict.get("level", "info")).upper()
        logger_name = str(event_dict.get("logger", ""))
        if logger_name.startswith("services."):
            logger_name = logger_name[len("services.") :]

        request_id = event_dict.get("request_id")
        request_tag = f"[{request_id[-4:]}]" if request_id else ""

        line = [
            str(event_dict.get("timestamp", "")),
            _LEVEL_MARKERS.get(level, ""),
            f"[{event_dict.get('service', self.service_name)}]",
            f"[{level}]",
            request_tag,
            logger_name,
            f"- {event_dict.get('event', '')}",
        ]

        user_id = event_dict.get("user_id")
        if user_id:
            line.append(f"| User: {user_id}")

        extras = [
            f"{key}={self._format_value(value)}"
            for key, value in event_dict.items()
            if key not in _HEADER_KEYS
        ]
        if extras:
            line.append("| " + ", ".join(extras))

        return " ".join(part for part in line if part)


def setup_service_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """
    Configure structlog and the stdlib root logger for a service.

    Args:
        service_name: Name of the service (e.g., "agenda")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "json" for machine output, anything else for text
    """
    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_request_context,
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(TextRenderer(service_name))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )

    # Transport libraries log every request at INFO
    for noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    get_logger(__name__).info(
        f"Logging configured for {service_name}",
        log_level=log_level,
        log_format=log_format,
    )


def create_request_logging_middleware() -> Callable:
    """
    Create HTTP request logging middleware for FastAPI.

    The middleware binds ``X-Request-Id`` (generated when absent) and
    ``X-User-Id`` to the logging context, logs the request and its outcome
    with timing, and echoes the request id on the response.
    """

    async def log_requests(request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(
            request.headers.get("X-User-Id") or ANONYMOUS_USER_ID
        )
        logger = get_logger("http.requests")
        started = time.perf_counter()

        try:
            logger.info(
                f"→ {request.method} {request.url.path}",
                method=request.method,
                query_params=str(request.query_params) or None,
                client_ip=request.client.host if request.client else "unknown",
            )

            response = await call_next(request)

            elapsed = time.perf_counter() - started
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                f"{request.method} {request.url.path} → {response.status_code} ({elapsed:.3f}s)",
                status_code=response.status_code,
                process_time=round(elapsed, 4),
            )
            response.headers["X-Request-Id"] = request_id
            return response
        finally:
            request_id_var.reset(request_token)
            user_id_var.reset(user_token)

    return log_requests


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def log_service_startup(service_name: str, **kwargs: Any) -> None:
    """Log service startup with configuration details."""
    get_logger("startup").info(
        f"Starting {service_name}", service=service_name, **kwargs
    )


def log_service_shutdown(service_name: str) -> None:
    """Log service shutdown event."""
    get_logger(__name__).info(f"Service {service_name} shutting down")
