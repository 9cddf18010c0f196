from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "ledger-service"


class ServiceSettings(BaseSettings):
    """Settings shared by the ledger service, its scripts and tests."""

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
    redis_url: str | None = Field(default=None)

    # Upstream bulk report API
    reports_api_url: str = Field(default="https://sellingpartnerapi-na.amazon.com")
    reports_api_access_token: str | None = Field(default=None)
    marketplace_id: str = Field(default="ATVPDKIKX0DER")
    report_poll_interval_seconds: float = Field(default=10.0, gt=0.0)
    report_max_wait_seconds: float = Field(default=300.0, gt=0.0)
    report_request_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # Ledger lifecycle
    claimable_after_days: int = Field(default=7, ge=0)
    resolved_retention_days: int = Field(default=90, ge=1)
    sync_lock_ttl_seconds: int = Field(default=900, ge=1)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )
