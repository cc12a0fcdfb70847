"""
portal_sdk.tier0_core.config
──────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values fail at
startup, not at runtime.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_ALLOWED_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "image/jpeg",
    "image/png",
]


class PortalConfig(BaseSettings):
    """
    Typed portal configuration. Portal-specific env vars are prefixed with
    PORTAL_; backend credentials keep their conventional SUPABASE_ names.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="portal", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Backend ───────────────────────────────────────────────────────────────
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    users_table: str = Field(default="users", alias="PORTAL_USERS_TABLE")

    # ── Caching ───────────────────────────────────────────────────────────────
    data_cache_ttl: float = Field(default=30.0, alias="PORTAL_CACHE_TTL_SECONDS", gt=0)
    identity_cache_ttl: float = Field(default=60.0, alias="PORTAL_IDENTITY_TTL_SECONDS", gt=0)

    # ── Uploads ───────────────────────────────────────────────────────────────
    storage_bucket: str = Field(default="documents", alias="PORTAL_STORAGE_BUCKET")
    upload_max_bytes: int = Field(default=10 * 1024 * 1024, alias="PORTAL_UPLOAD_MAX_BYTES")
    upload_min_bytes: int = Field(default=64, alias="PORTAL_UPLOAD_MIN_BYTES", ge=1)
    upload_timeout: float = Field(default=15.0, alias="PORTAL_UPLOAD_TIMEOUT_SECONDS", gt=0)
    upload_retry_timeout: float = Field(
        default=8.0, alias="PORTAL_UPLOAD_RETRY_TIMEOUT_SECONDS", gt=0
    )
    upload_allowed_types: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_ALLOWED_TYPES),
        alias="PORTAL_UPLOAD_ALLOWED_TYPES",
    )
    mock_storage_base_url: str = Field(
        default="https://mock-storage.charusat.edu.in",
        alias="PORTAL_MOCK_STORAGE_URL",
    )

    # ── Identity policy ───────────────────────────────────────────────────────
    student_email_domain: str = Field(default="charusat.edu.in", alias="PORTAL_STUDENT_DOMAIN")
    staff_email_domain: str = Field(default="charusat.ac.in", alias="PORTAL_STAFF_DOMAIN")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="PORTAL_LOG_LEVEL")
    log_format: str = Field(default="json", alias="PORTAL_LOG_FORMAT")

    # ── Metrics ───────────────────────────────────────────────────────────────
    metrics_port: int | None = Field(default=None, alias="PORTAL_METRICS_PORT")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("student_email_domain", "staff_email_domain")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        return v.lower().lstrip("@")

    @model_validator(mode="after")
    def check_upload_bounds(self) -> "PortalConfig":
        if self.upload_min_bytes > self.upload_max_bytes:
            raise ValueError("upload_min_bytes must not exceed upload_max_bytes")
        if self.upload_retry_timeout > self.upload_timeout:
            raise ValueError("upload_retry_timeout must not exceed upload_timeout")
        return self

    @property
    def backend_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_config() -> PortalConfig:
    """
    Return the singleton portal config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return PortalConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()
