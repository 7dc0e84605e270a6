from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # Database
    database_url: str = "sqlite:///./event_admission.db"

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("redis_url", "REDIS_URL"),
    )
    lock_timeout_seconds: int = 10
    lock_blocking_timeout_seconds: float = 5

    # Waitlist
    waitlist_offer_hours: int = 24
    waitlist_sweep_interval_seconds: int = 300

    # Caching / outbound queues
    stats_cache_ttl_seconds: int = 30
    email_queue_key: str = "outbound:email"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
