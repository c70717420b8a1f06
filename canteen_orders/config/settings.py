from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

# Width of orders.idempotency_key
IDEMPOTENCY_KEY_MAX_LENGTH = 100


class Settings(BaseSettings):
    # Database
    database_url: str = "duckdb://./data/canteen_orders.duckdb"

    # API
    api_title: str = "Canteen Orders API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # Ordering rules
    canteen_timezone: str = "UTC"
    idempotency_key_max_length: int = Field(IDEMPOTENCY_KEY_MAX_LENGTH, ge=1, le=IDEMPOTENCY_KEY_MAX_LENGTH)
    idempotency_requery_attempts: int = 10
    idempotency_requery_delay: float = 0.05
    report_duplicates_as_conflict: bool = False

    # Logging
    log_level: Optional[str] = None
    log_json: bool = False

    # Development mode
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CANTEEN_",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
