from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewards.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "rewards-default"

    # Points ledger
    points_per_currency_unit: Decimal = Decimal("10")

    # Reward evaluation pipeline
    reward_pipeline_backend: Literal["celery", "redis", "memory"] = "celery"
    reward_pipeline_queue_name: str = "rewards:evaluations"
    reward_evaluation_task_queue: str = "reward-evaluation"
    reward_evaluation_max_attempts: int = 3
    reward_evaluation_backoff_seconds: int = 30
    reward_evaluation_timeout_seconds: int = 120
    reward_worker_poll_timeout_seconds: int = 5
    reward_worker_batch_size: int = 25

    # Unlock broadcasting
    reward_broadcaster: Literal["log", "redis"] = "log"
    reward_broadcast_channel_prefix: str = "user."

    @field_validator("points_per_currency_unit")
    @classmethod
    def _validate_rate(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("points_per_currency_unit must be positive")
        return value

    @field_validator("reward_evaluation_max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("reward_evaluation_max_attempts must be at least 1")
        return value

    @field_validator("reward_evaluation_backoff_seconds")
    @classmethod
    def _validate_backoff(cls, value: int) -> int:
        if value < 0:
            raise ValueError("reward_evaluation_backoff_seconds cannot be negative")
        return value

    @field_validator("reward_evaluation_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("reward_evaluation_timeout_seconds must be positive")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
