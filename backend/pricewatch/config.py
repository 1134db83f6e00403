"""Application configuration via Pydantic Settings."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/price_monitor.db"
    BACKUP_DIR: str = "./backups"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Monitoring
    CHECK_INTERVAL_MINUTES: int = 60
    PROMOTION_THRESHOLD: float = 0.1  # 10%
    REQUEST_DELAY_MS: int = 2000
    MAX_RETRIES: int = 3
    MONITOR_BATCH_SIZE: int = 5
    MONITOR_MAX_PRODUCTS_PER_CHECK: int = 50
    MONITOR_WARMUP_SECONDS: int = 60
    MAX_ERROR_COUNT: int = 5
    HISTORY_RETENTION_DAYS: int = 90
    MAINTENANCE_EVERY_CHECKS: int = 10
    BACKUP_EVERY_CHECKS: int = 50
    SUMMARY_NOTIFICATION_THRESHOLD: int = 5
    FORCE_CHECK_DELAY_MS: int = 1000
    MONITOR_TIMEZONE: str = "America/Sao_Paulo"

    # Scraping
    USER_AGENT: str = DEFAULT_USER_AGENT
    ROTATE_USER_AGENT: bool = False
    REQUEST_TIMEOUT_MS: int = 10000
    MAX_REDIRECTS: int = 5
    SCRAPE_BATCH_CONCURRENCY: int = 3
    SCRAPE_BATCH_DELAY_MS: int = 2000

    # Notifications
    DISCORD_WEBHOOK_URL: str = ""
    ADMIN_WEBHOOK_URL: str = ""  # Receives cycle summaries and error reports
    NOTIFICATION_COOLDOWN_MINUTES: int = 10
    NOTIFICATION_SEND_DELAY_MS: int = 2000

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
