from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Supabase (anon key only: the controller acts on behalf of the signed-in user)
    supabase_url: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_breaker_fail_max: int = Field(default=5)
    supabase_breaker_reset_timeout: int = Field(default=60)

    # Pending action ledger
    redis_url: str = Field(default="redis://localhost:6379")
    ledger_backend: Literal["redis", "memory"] = Field(default="redis")
    ledger_namespace: str = Field(default="default")

    # Frontend
    frontend_url: str = Field(default="http://localhost:3000")
    password_reset_path: str = Field(default="/reset-password")

    # Session controller timing
    loading_timeout_seconds: float = Field(default=15.0)
    navigation_cooldown_seconds: float = Field(default=0.5)

    # Remote lookup retries
    retry_max_attempts: int = Field(default=3)
    retry_backoff_step_seconds: float = Field(default=1.0)
    retry_backoff_max_seconds: float = Field(default=3.0)

    @field_validator("loading_timeout_seconds", "navigation_cooldown_seconds")
    @classmethod
    def ensure_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timing settings must not be negative")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def ensure_at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        return v

    @property
    def password_reset_redirect_url(self) -> str:
        return self.frontend_url.rstrip("/") + self.password_reset_path


settings = Settings()
