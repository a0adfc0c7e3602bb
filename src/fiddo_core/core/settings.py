from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "fiddo-core"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./fiddo.db"
    database_echo: bool = False

    # Identity normalization
    default_phone_country_code: str = "+32"
    dotless_email_domains: list[str] = Field(default_factory=lambda: ["gmail.com", "googlemail.com"])

    @field_validator("dotless_email_domains", mode="before")
    @classmethod
    def _parse_domain_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []

    # Ledger guardrails
    cashier_max_credit_amount: Decimal = Decimal("200")

    # Gift vouchers
    gift_voucher_ttl_seconds: int = 7 * 24 * 60 * 60
    gift_voucher_sweep_batch_size: int = 200

    # Job scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Email / notification settings
    notifications_enabled: bool = True
    app_base_url: str = "http://localhost:3000"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
