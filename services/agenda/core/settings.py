from typing import Optional

from services.common.settings import (
    AliasChoices,
    BaseSettings,
    Field,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Agenda Service settings and configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Service configuration
    SERVICE_NAME: str = Field(default="agenda-service", description="Service name")
    PORT: int = Field(default=8006, description="Port to bind to")
    HOST: str = Field(default="0.0.0.0", description="Host to bind to")
    DEBUG: bool = Field(default=False, description="Debug mode")

    # API Keys for service communication
    api_frontend_agenda_key: str = Field(
        ...,  # Required field - no default to prevent production mistakes
        description="Frontend API key to access this Agenda service",
        validation_alias=AliasChoices("API_FRONTEND_AGENDA_KEY"),
    )
    api_agenda_user_key: Optional[str] = Field(
        default=None,
        description="Agenda service API key to call the User Management service",
        validation_alias=AliasChoices("API_AGENDA_USER_KEY"),
    )

    # Service URLs
    USER_SERVICE_URL: str = Field(
        default="http://localhost:8001", description="User management service URL"
    )

    # Google provider
    GOOGLE_API_BASE_URL: str = Field(
        default="https://www.googleapis.com", description="Google APIs base URL"
    )
    GOOGLE_TOKEN_URL: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Google OAuth token endpoint used for refresh",
    )
    GOOGLE_CLIENT_ID: Optional[str] = Field(
        default=None, description="Google OAuth client ID"
    )
    GOOGLE_CLIENT_SECRET: Optional[str] = Field(
        default=None, description="Google OAuth client secret"
    )

    # Aggregation limits
    SOURCE_FETCH_TIMEOUT: float = Field(
        default=10.0, description="Timeout in seconds for a single calendar source"
    )
    AGGREGATION_TIMEOUT: float = Field(
        default=30.0, description="Deadline in seconds for a whole aggregation"
    )
    DISCONNECT_POLL_INTERVAL: float = Field(
        default=0.5, description="Seconds between client disconnect checks"
    )
    DEFAULT_DAYS_TO_SHOW: int = Field(
        default=7, description="Window length when neither query nor preferences set one"
    )
    DEFAULT_MAX_RESULTS: int = Field(
        default=50, description="Result cap when neither query nor preferences set one"
    )

    # Logging configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json or text)")

    # Application info
    APP_NAME: str = Field(default="agenda-service", description="Application name")
    APP_VERSION: str = Field(default="0.1.0", description="Application version")
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment (development, staging, production)",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings
