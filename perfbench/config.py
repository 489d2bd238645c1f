"""
Application Configuration using Pydantic Settings

Loads configuration from environment variables with sensible defaults.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ========================================================================
    # Postgres Connection Settings
    # ========================================================================
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DATABASE: str = "postgres"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SSL: bool = False

    # Initial connect is retried on transient "server not ready" errors.
    POSTGRES_CONNECT_RETRIES: int = 3
    POSTGRES_RETRY_DELAY_SECONDS: float = 1.0
    POSTGRES_COMMAND_TIMEOUT: Optional[float] = None

    # ========================================================================
    # Test Execution Settings
    # ========================================================================
    # Rows fetched from the server cursor per progress event.
    STREAM_BATCH_ROWS: int = 1000

    # Heartbeat interval while waiting on the server, in seconds.
    PROGRESS_TICK_SECONDS: float = 0.1

    # Latency samples kept per run slot for quantile estimation.
    RESERVOIR_CAPACITY: int = 8192

    # Relative tolerance for "average speed did not change".
    DEFAULT_AVG_ROWS_SPEED_PRECISION: float = 0.001
    DEFAULT_AVG_BYTES_SPEED_PRECISION: float = 0.001

    FLUSH_DISK_CACHE_COMMAND: str = "sync && sudo sh -c 'echo 3 > /proc/sys/vm/drop_caches'"

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):
        return str(v or "INFO").upper()

    @field_validator("STREAM_BATCH_ROWS", "RESERVOIR_CAPACITY")
    @classmethod
    def _positive(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("PROGRESS_TICK_SECONDS")
    @classmethod
    def _positive_tick(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v


# Create global settings instance
settings = Settings()
