from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process configuration read from the environment (or a local .env)."""

    app_name: str = "marketchat"
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = "INFO"

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "marketchat"

    # No REDIS_URL -> in-process bus (single worker only)
    redis_url: Optional[str] = None

    message_max_length: int = Field(default=1000, ge=1)
    preview_length: int = Field(default=200, ge=1)

    badge_debounce_seconds: float = Field(default=0.25, ge=0)
    resubscribe_backoff_initial: float = Field(default=0.5, gt=0)
    resubscribe_backoff_max: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    @property
    def is_test(self) -> bool:
        return self.environment.lower() == "test"


@lru_cache
def get_settings() -> Settings:
    return Settings()
