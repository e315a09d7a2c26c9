from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "deal-service"


class ServiceSettings(BaseSettings):
    """Runtime settings read from `SERVICE_*` environment variables and `.env` files."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    database_auto_create: bool = Field(default=False)
    redis_url: str | None = Field(default=None)
    deal_cache_ttl_seconds: int = Field(default=120, ge=0)
    deal_low_stock_threshold: int = Field(default=3, ge=0)
    deal_urgent_window_hours: int = Field(default=24, ge=0)
    deal_countdown_refresh_seconds: int = Field(default=60, ge=1)
    deal_currency_symbol: str = Field(default="₪", min_length=1, max_length=8)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )
