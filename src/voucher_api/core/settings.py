from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./vouchers.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # Operator tooling (observability snapshots)
    operator_api_key: str = ""

    # Tracing
    tracing_enabled: bool = True
    tracing_console_export: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    # Redemption engine
    voucher_redemption_max_attempts: int = Field(default=3, ge=1)
    voucher_storage_timeout_seconds: float | None = 10.0
    voucher_default_currency: str = "IDR"

    @field_validator("voucher_storage_timeout_seconds", mode="before")
    @classmethod
    def _parse_timeout(cls, value: object) -> float | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        timeout = float(value)  # type: ignore[arg-type]
        # Zero or negative disables the bound.
        return timeout if timeout > 0 else None

    @field_validator("voucher_default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> str:
        return str(value or "IDR").strip().upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
