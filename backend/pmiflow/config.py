"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache): single instance per process
    - computation_service_url never ends with a slash (endpoints are appended)
    - lease_ttl_seconds exceeds detect_max_attempts x computation_timeout_seconds
      plus backoff, so a live detection step never loses its lease

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Timeouts and retry budgets live here, not in workflow code, so ops can tune them
"""

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pmiflow.core.backoff import backoff_delay_ms


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://pmiflow:pmiflow@db:5432/pmiflow"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Computation service (detection + PMI)
    computation_service_url: str = "http://localhost:8000"
    computation_service_api_key: str = "pmi-placeholder-key"
    computation_timeout_seconds: float = 30 * 60
    detect_max_attempts: int = 3

    @field_validator("computation_service_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # Workflows
    upload_grace_period_seconds: float = 60
    workflow_retries: int = 2

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_poll_interval_seconds: float = 1.0
    scheduler_concurrency: int = 10
    # Must outlive the longest step (3 detection attempts x 30 min + backoff)
    lease_ttl_seconds: float = 2 * 60 * 60

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def longest_detection_seconds(self) -> float:
        """Worst case for one run-full-analysis step: every attempt times out, plus backoff."""
        backoff_ms = sum(
            backoff_delay_ms(attempt) for attempt in range(1, self.detect_max_attempts)
        )
        return self.detect_max_attempts * self.computation_timeout_seconds + backoff_ms / 1000

    @model_validator(mode="after")
    def lease_outlives_detection(self) -> "Settings":
        if self.lease_ttl_seconds <= self.longest_detection_seconds:
            raise ValueError(
                f"lease_ttl_seconds ({self.lease_ttl_seconds:g}) must exceed the longest "
                f"detection step ({self.longest_detection_seconds:g}s); a shorter lease "
                f"lets another scheduler re-claim the instance and re-send the request",
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
