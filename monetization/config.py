"""Application configuration loaded from environment variables."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings. Business rules (hold period, fees, minimums) live in constants.py."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Creator Earnings Ledger"
    LOG_LEVEL: str = "INFO"

    # CORS - can be "*" for all origins or comma-separated list
    CORS_ORIGINS: str = "*"

    # Seconds a cached stats snapshot is served before recomputing; 0 disables caching.
    STATS_CACHE_TTL_SECONDS: int = Field(default=60, ge=0)

    # Total attempts for the withdrawal transaction when storage reports a conflict.
    WITHDRAWAL_RETRY_ATTEMPTS: int = Field(default=2, ge=1)

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
