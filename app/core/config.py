from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from app.core.enums import CreditTargetPolicy


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Shared secret the bank sends in X-Webhook-Secret. None disables the check.
    bank_webhook_secret: Optional[str] = Field(None, alias="BANK_WEBHOOK_SECRET")

    ledger_lock_timeout_ms: int = Field(5000, alias="LEDGER_LOCK_TIMEOUT_MS")
    transient_retry_attempts: int = Field(1, alias="TRANSIENT_RETRY_ATTEMPTS")
    transient_retry_backoff_seconds: float = Field(0.2, alias="TRANSIENT_RETRY_BACKOFF_SECONDS")

    credit_target_policy: CreditTargetPolicy = Field(CreditTargetPolicy.LATER_TERM, alias="CREDIT_TARGET_POLICY")
    strict_webhook_term_matching: bool = Field(False, alias="STRICT_WEBHOOK_TERM_MATCHING")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
