from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MURMUR_", extra="ignore")

    allowed_hosts: str = "localhost,127.0.0.1,testserver"
    cors_allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_json: bool = False

    # Entity store backend.
    # - sql: SQLAlchemy documents at db_url (sqlite by default)
    # - memory: process-local store, lost on restart
    store_backend: str = "sql"
    db_url: str = "sqlite:///./artifacts/murmur.db"

    # Transactions older than this at commit time are aborted as retryable.
    txn_timeout_sec: float = 5.0
    conflict_retry_attempts: int = 4
    conflict_retry_base_delay_ms: int = 20
    conflict_retry_max_delay_ms: int = 1000

    auth_jwt_secret: str = "dev-secret-change-me"
    auth_jwt_issuer: str = "murmur-local"
    auth_jwt_exp_minutes: int = 60 * 24 * 7

    comment_max_length: int = 650
    allow_self_like: bool = True

    feed_default_limit: int = 20
    feed_max_limit: int = 100

    # Alerts (Discord-compatible webhook), optional.
    alerts_enabled: bool = False
    alerts_webhook_url: str | None = None
    alerts_timeout_sec: float = 3.0

    @field_validator("store_backend")
    @classmethod
    def _validate_store_backend(cls, v: str) -> str:
        norm = str(v or "").strip().lower()
        if norm not in {"sql", "memory"}:
            raise ValueError(
                f"MURMUR_STORE_BACKEND must be 'sql' or 'memory' (got {v!r})"
            )
        return norm

    @field_validator("txn_timeout_sec", "alerts_timeout_sec")
    @classmethod
    def _validate_positive_seconds(cls, v: float) -> float:
        if float(v) <= 0:
            raise ValueError("timeouts must be positive")
        return float(v)

    @field_validator(
        "conflict_retry_attempts",
        "conflict_retry_max_delay_ms",
        "comment_max_length",
        "feed_default_limit",
        "feed_max_limit",
    )
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if int(v) < 1:
            raise ValueError("must be >= 1")
        return int(v)
