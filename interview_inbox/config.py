from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres
    DATABASE_URL: str = "postgresql://localhost:5432/interview_inbox"

    # Google OAuth client used for refreshing recruiter mailbox tokens
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    ENCRYPTION_KEY: str | None = None

    # Downstream AI analysis endpoint
    AI_ANALYSIS_URL: str = "http://localhost:8080/process-email"
    AI_DISPATCH_TIMEOUT_SECONDS: float = 60.0

    # =================================================================
    # INTERVIEW POLLER
    # =================================================================
    POLL_INTERVAL_MINUTES: int = 5
    POLL_INVOCATION_RETRIES: int = 3
    POLL_RETRY_BASE_DELAY_SECONDS: float = 5.0
    POLL_TICK_TIMEOUT_SECONDS: float | None = 240.0
    MAIL_SEARCH_MAX_RESULTS: int = 50
    MAIL_SEARCH_LOOKBACK_MINUTES: int | None = None  # None = no time filter
    POLLER_MAX_CONCURRENT_WORKFLOWS: int = 5
    RUN_POLLER_IN_API: bool = False

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config

    def poller_config(self) -> dict:
        """Poller knobs as a flat dict, used for logging and status reporting."""
        return {
            "interval_minutes": self.POLL_INTERVAL_MINUTES,
            "invocation_retries": self.POLL_INVOCATION_RETRIES,
            "tick_timeout_seconds": self.POLL_TICK_TIMEOUT_SECONDS,
            "search_max_results": self.MAIL_SEARCH_MAX_RESULTS,
            "search_lookback_minutes": self.MAIL_SEARCH_LOOKBACK_MINUTES,
            "max_concurrent_workflows": self.POLLER_MAX_CONCURRENT_WORKFLOWS,
        }


settings = Settings()
