import logging
import secrets

from pydantic_settings import BaseSettings
from typing import List

_logger = logging.getLogger(__name__)


def _generate_secret(name: str) -> str:
    """Generate a random secret and warn that it should be set explicitly."""
    value = secrets.token_urlsafe(48)
    _logger.warning(
        "%s not set, using auto-generated value. "
        "Set %s in your .env or environment for production.",
        name,
        name,
    )
    return value


class Settings(BaseSettings):
    # App
    APP_NAME: str = "HookRelay"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security (access tokens are issued by the external auth service)
    SECRET_KEY: str = ""
    ACCESS_TOKEN_ALGORITHM: str = "HS256"

    # Database, defaults to SQLite so a bare checkout runs without .env
    DATABASE_URL: str = "sqlite+aiosqlite:///./hookrelay.db"

    # Celery (retention beat only, delivery retries stay in-process)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    def model_post_init(self, __context) -> None:
        if not self.SECRET_KEY or self.SECRET_KEY == "change-this-in-production":
            object.__setattr__(self, "SECRET_KEY", _generate_secret("SECRET_KEY"))

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database Pool
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    WORKER_DB_POOL_SIZE: int = 5

    # Outgoing webhooks
    WEBHOOK_REQUEST_TIMEOUT: float = 30.0  # seconds
    WEBHOOK_RESPONSE_BODY_LIMIT: int = 1000  # chars of response body kept per attempt
    WEBHOOK_RETRY_BATCH_SIZE: int = 100
    WEBHOOK_MAX_CONCURRENT_DELIVERIES: int = 20
    WEBHOOK_DEFAULT_MAX_RETRIES: int = 6
    WEBHOOK_USER_AGENT: str = "HookRelay-Webhook/1.0"

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    # Data Retention
    DELIVERY_RETENTION_DAYS: int = 30
    INBOUND_LOG_RETENTION_DAYS: int = 90

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
