"""Application configuration"""
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = "sqlite:///./devicehub.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour
    DATABASE_AUTO_CREATE: bool = True  # create_all() on startup; disable when alembic owns the schema

    # Cache
    CACHE_URL: str = "memory://"  # Use redis:// for production
    DEVICE_LIST_CACHE_TTL: int = 900
    DEVICE_LOGS_CACHE_TTL: int = 300
    DEVICE_USAGE_CACHE_TTL: int = 300
    USER_PROFILE_CACHE_TTL: int = 1800

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # JWT Authentication (two independent secrets, one per token kind)
    ACCESS_TOKEN_SECRET: Optional[str] = None
    REFRESH_TOKEN_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 15 * 60
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 7 * 24 * 3600

    # Refresh token cookie
    REFRESH_COOKIE_NAME: str = "refreshToken"
    COOKIE_SECURE: bool = False  # True behind HTTPS

    # Rate Limiting (fixed window, counters live in the cache)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AUTH_LIMIT: int = 10
    RATE_LIMIT_AUTH_WINDOW: int = 60
    RATE_LIMIT_EXPORT_LIMIT: int = 5
    RATE_LIMIT_EXPORT_WINDOW: int = 60

    # Exports
    EXPORT_DIR: str = "./exports"
    EXPORT_BASE_URL: str = "https://example.com/exports"
    EXPORT_PROCESSING_DELAY_SECONDS: int = 300
    EXPORT_MAX_ATTEMPTS: int = 3
    SYNC_EXPORT_MAX_DAYS: int = 31

    # Job engine
    JOB_WORKERS: int = 4
    JOB_RETRY_BACKOFF_SECONDS: float = 5.0
    JOB_RESUME_ON_STARTUP: bool = True

    # Scheduled functions
    SCHEDULER_ENABLED: bool = True
    DEACTIVATION_SWEEP_INTERVAL_SECONDS: int = 24 * 3600
    DEACTIVATION_CUTOFF_HOURS: int = 24
    TOKEN_PURGE_INTERVAL_SECONDS: int = 3600

    # Webhooks (fire-and-forget notifications for export events)
    WEBHOOK_URL: Optional[str] = None          # Any HTTPS URL; Slack incoming webhooks auto-detected
    WEBHOOK_SECRET: Optional[str] = None       # If set, signs body with HMAC-SHA256

    # Monitoring
    METRICS_ENABLED: bool = True
    METRICS_PATH: str = "/metrics"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
