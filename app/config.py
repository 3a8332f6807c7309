from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase Postgres (pooled connection string)
    SUPABASE_DB_URL: str

    # Shared secret the external scheduler sends as a bearer token
    CRON_SECRET: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # PIPELINE SCORING
    # =================================================================
    PIPELINE_STALE_THRESHOLD_HOURS: float = 23.0
    PIPELINE_QUEUE_BATCH_LIMIT: int = 500
    # Claimed requests not marked within this window are picked up again
    PIPELINE_QUEUE_CLAIM_TIMEOUT_MINUTES: int = 30
    PIPELINE_BATCH_SIZE: int = 25
    PIPELINE_BATCH_DELAY_SECONDS: float = 0.2
    PIPELINE_MAX_CONCURRENCY: int = 10
    PIPELINE_ITEM_TIMEOUT_SECONDS: float = 30.0
    PIPELINE_BATCH_TIMEOUT_SECONDS: float = 300.0  # daily run wall-clock budget
    PIPELINE_SCHEDULE_HOUR_UTC: int = 6
    PIPELINE_SCHEDULER_ENABLED: bool = True
    PIPELINE_ERROR_RATE_ALERT_THRESHOLD: float = 0.5
    PIPELINE_RUN_ERROR_LIMIT: int = 50
    # JSON object overriding decay rates, grace periods or stage cutoffs
    PIPELINE_SCORING_CONFIG_JSON: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Development uses a smaller pool and a shorter acquire timeout.
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

    def get_pipeline_batch_config(self) -> dict:
        """Knobs shared by the queue processor and the stale sweeper."""
        return {
            "batch_size": self.PIPELINE_BATCH_SIZE,
            "batch_delay_seconds": self.PIPELINE_BATCH_DELAY_SECONDS,
            "max_concurrency": self.PIPELINE_MAX_CONCURRENCY,
            "item_timeout_seconds": self.PIPELINE_ITEM_TIMEOUT_SECONDS,
        }


settings = Settings()
