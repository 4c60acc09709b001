from pydantic import AnyUrl, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    # Storage/queue backend selection: "memory" or "redis"
    BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    REDIS_PREFIX: str = "orderevents"
    # Event log
    EVENTS_RETENTION_SECONDS: int = 300
    # Queue delivery
    MAX_RECEIVE_COUNT: int = 3
    VISIBILITY_TIMEOUT_SECONDS: float = 30.0
    RETRY_BACKOFF_SECONDS: float = 5.0
    RETRY_BACKOFF_EXPONENTIAL: bool = False
    RETRY_BACKOFF_MAX_SECONDS: float = 300.0
    # Consumers
    CONSUMER_TIMEOUT_SECONDS: float = 10.0
    CONSUMER_BATCH_SIZE: int = 10
    CONSUMER_WAIT_SECONDS: float = 20.0
    START_CONSUMERS: bool = True
    # Comma-separated eventType allow-list for the billing subscription
    BILLING_EVENT_TYPES: str = "CREATED"

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.VISIBILITY_TIMEOUT_SECONDS <= self.CONSUMER_TIMEOUT_SECONDS:
            raise ValueError("VISIBILITY_TIMEOUT_SECONDS must exceed CONSUMER_TIMEOUT_SECONDS")
        if self.MAX_RECEIVE_COUNT < 1:
            raise ValueError("MAX_RECEIVE_COUNT must be at least 1")
        return self

    @property
    def billing_event_types(self) -> list[str]:
        return [t.strip() for t in self.BILLING_EVENT_TYPES.split(",") if t.strip()]

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
