"""Application configuration settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Cinebook Booking API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str | None = None  # overrides the DB_* fields when set
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "password"
    DB_NAME: str = "cinebook"
    DB_ECHO: bool = False
    DB_CREATE_ALL: bool = True

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None
    REDIS_DB: int = 0

    # Hold settings
    HOLD_TTL_SECONDS: int = 300  # 5 minutes
    MAX_SEATS_PER_HOLD: int = 10
    REAPER_INTERVAL_SECONDS: int = 30

    # Showtime lock settings
    LOCK_BACKEND: str = "local"  # "local" or "redis"
    LOCK_TIMEOUT_SECONDS: int = 30
    LOCK_RETRY_DELAY_MS: int = 100
    LOCK_MAX_RETRIES: int = 50

    # Payment settings
    PAYMENT_MODE: str = "simulated"  # "simulated" or "callback"
    PAYMENT_TIMEOUT_SECONDS: int = 60
    PAYMENT_SIMULATED_DELAY_MS: int = 0

    # Ledger settings
    LEDGER_MAX_RETRIES: int = 3
    LEDGER_RETRY_BACKOFF_MS: int = 200

    @property
    def database_url(self) -> str:
        """Get async database URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def redis_url(self) -> str:
        """Get Redis URL."""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
