import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List

from fastapi import FastAPI

from services.agenda.api.calendar import router as calendar_router
from services.agenda.core.settings import get_settings
from services.common.http_errors import register_exception_handlers
from services.common.logging_config import (
    create_request_logging_middleware,
    get_logger,
    log_service_shutdown,
    log_service_startup,
    setup_service_logging,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    settings = get_settings()

    setup_service_logging(
        service_name="agenda",
        log_level=settings.LOG_LEVEL,
        log_format=settings.LOG_FORMAT,
    )

    log_service_startup(
        "agenda",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        debug=settings.DEBUG,
        user_service_url=settings.USER_SERVICE_URL,
        source_fetch_timeout=settings.SOURCE_FETCH_TIMEOUT,
        aggregation_timeout=settings.AGGREGATION_TIMEOUT,
    )
    yield
    log_service_shutdown("agenda")


app = FastAPI(
    title="Agenda Service",
    description="Aggregates a user's primary, holiday and shared Google calendars into one filtered agenda",
    version="0.1.0",
    openapi_tags=[
        {
            "name": "calendar",
            "description": "Merged calendar events, holiday calendars and calendar settings",
        },
    ],
    debug=False,
    lifespan=lifespan,
)

app.middleware("http")(create_request_logging_middleware())

register_exception_handlers(app)

app.include_router(calendar_router, prefix="/v1")


def configuration_issues() -> List[str]:
    settings = get_settings()
    issues = []
    if not settings.api_frontend_agenda_key:
        issues.append("API_FRONTEND_AGENDA_KEY not configured")
    if not settings.api_agenda_user_key:
        issues.append("API_AGENDA_USER_KEY not configured")
    if not settings.USER_SERVICE_URL:
        issues.append("USER_SERVICE_URL not configured")
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET):
        issues.append("Google OAuth client credentials not configured")
    return issues


@app.get("/")
async def read_root() -> Dict[str, str]:
    logger.info("Root endpoint accessed")
    settings = get_settings()
    return {"message": "Agenda Service", "service": settings.APP_NAME}


@app.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint for load balancers and monitoring.
    Reports configuration problems; the service keeps no database.
    """
    start_time = time.time()
    settings = get_settings()

    issues = configuration_issues()
    config_status = "ok" if not issues else "error"

    return {
        "status": config_status,
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "configuration": {"status": config_status, "issues": issues},
        },
        "performance": {
            "total_check_time_ms": round((time.time() - start_time) * 1000, 2)
        },
    }


@app.get("/ready")
async def ready_check() -> Dict[str, str]:
    """
    Simple readiness check.
    """
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.agenda.app.main:app",
        host=get_settings().HOST,
        port=get_settings().PORT,
        reload=get_settings().DEBUG,
        log_level=get_settings().LOG_LEVEL.lower(),
        access_log=False,  # Request logging is handled by the middleware
    )
