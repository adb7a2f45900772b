from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./promo.db"
    database_echo: bool = False

    # Internal API security (order-side coupon redemption, observability)
    checkout_api_key: str = ""

    # Marketing listings
    marketing_default_page_size: int = Field(default=20, ge=1)
    marketing_max_page_size: int = Field(default=100, ge=1)

    # Coupon expiration sweeps
    coupon_expiration_worker_enabled: bool = False
    coupon_expiration_interval_seconds: int = 5 * 60

    # Marketing automation scheduler
    marketing_job_scheduler_enabled: bool = False
    marketing_job_schedule_path: str = "config/schedules.toml"

    # Tracing
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    @field_validator("marketing_max_page_size")
    @classmethod
    def _bound_page_size(cls, value: int) -> int:
        return min(value, 500)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
