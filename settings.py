
# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal



class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(...)
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 10000

    # -----------------------
    # App
    # -----------------------
    APP_ENV: Literal["development", "staging", "production", "test"] = "development"
    APP_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    # HTTP timeouts
    GATEWAY_HTTP_TIMEOUT_S: float = 30.0

    # -----------------------
    # PALMPAY
    # -----------------------
    PALMPAY_APP_ID: str = ""
    PALMPAY_BASE_URL: str = ""
    PALMPAY_PRIVATE_KEY: str = ""
    # optional: when empty, webhook signatures cannot be verified
    PALMPAY_PUBLIC_KEY: str = ""

    # -----------------------
    # OGATEWAY
    # -----------------------
    OGATEWAY_API_KEY: str = ""
    OGATEWAY_BASE_URL: str = ""
    OGATEWAY_WEBHOOK_SECRET: str = ""

    # -----------------------
    # Admin relay
    # -----------------------
    ADMIN_API_BASEURL: str = ""
    WEBHOOK_SECRET: str = ""

    # -----------------------
    # Webhooks
    # -----------------------
    WEBHOOK_STALE_HOURS: int = 24

    # -----------------------
    # Jobs
    # -----------------------
    JOBS_ENABLED: bool = False
    SCHEDULER_IN_API: bool = False
    JOB_BATCH_SIZE: int = 200

    # when set, /v1/ops/* requires X-Ops-Key
    OPS_API_KEY: str = ""

    PAYMENT_STATUS_CHECK_ENABLED: bool = True
    PAYMENT_STATUS_CLEANUP_ENABLED: bool = True
    PAYMENT_STATUS_CHECK_MAX_AGE_MINUTES: int = 30
    PAYMENT_STATUS_CHECK_INTERVAL_HOURS: int = 6
    PAYMENT_STATUS_CLEANUP_AGE_HOURS: int = 24

    TIP_SELECTION_EVALUATION_ENABLED: bool = True
    TIP_OUTCOME_DETERMINATION_ENABLED: bool = True
    TIP_EVALUATION_INTERVAL_MINUTES: int = 15

    ESCROW_SETTLEMENT_ENABLED: bool = True
    ESCROW_SETTLEMENT_INTERVAL_MINUTES: int = 30

    GATEWAY_REFRESH_ENABLED: bool = True
    GATEWAY_REFRESH_INTERVAL_MINUTES: int = 10

    def is_production(self) -> bool:
        return self.APP_ENV == "production"



settings = Settings()
