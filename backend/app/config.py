"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # General
    APP_NAME: str = "Workflow Execution Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production, testing

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Execution Settings
    MAX_CONCURRENT_WORKFLOWS: int = 10
    # Backoff schedule in seconds, one entry per retry attempt
    RETRY_DELAYS: str = "1,5,15,30,60"
    DEFAULT_DELAY_MS: int = 1000
    DEFAULT_TASK_DUE_DAYS: int = 7

    # Outbound HTTP (api_call nodes, webhook notifications)
    HTTP_TIMEOUT: float = 30.0

    # Notifications
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def retry_delays_list(self) -> list[float]:
        """Parse RETRY_DELAYS into a list of seconds."""
        return [float(d.strip()) for d in self.RETRY_DELAYS.split(",") if d.strip()]

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
