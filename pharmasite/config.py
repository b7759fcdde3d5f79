from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from .ratelimit import RateLimitConfig

load_dotenv()


class Settings(BaseModel):
    DATABASE_PATH: str = Field(default="pharmasite.db")
    ADMIN_TOKEN: str = Field(default="dev_admin_token")  # bearer for the back office
    ADMIN_API_KEYS: str = Field(default="", description="comma-separated API keys")
    ADMIN_PATH_PREFIX: str = Field(default="/api/admin")
    CORS_ALLOW_ORIGINS: str = Field(default="*")
    LOG_LEVEL: str = Field(default="INFO")
    TRUST_FORWARDED_HEADERS: bool = Field(default=True)  # disable when not behind a proxy
    CONTACT_RATE_LIMIT_TOKENS: int = Field(default=5)
    CONTACT_RATE_LIMIT_WINDOW_MS: int = Field(default=60_000)
    CAREERS_RATE_LIMIT_TOKENS: int = Field(default=3)
    CAREERS_RATE_LIMIT_WINDOW_MS: int = Field(default=60_000)
    RATE_LIMIT_IDLE_TTL_SECONDS: int = Field(default=600)
    RATE_LIMIT_EVICT_ENABLED: bool = Field(default=False)
    RATE_LIMIT_EVICT_INTERVAL_SECONDS: int = Field(default=300)
    RATE_LIMIT_EVICT_JITTER_SECONDS: int = Field(default=15)
    RATE_LIMIT_EVICT_BACKOFF_MAX_SECONDS: int = Field(default=600)
    RECAPTCHA_SECRET_KEY: Optional[str] = Field(default=None)
    RECAPTCHA_VERIFY_URL: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify"
    )
    RECAPTCHA_MIN_SCORE: float = Field(default=0.5)
    RECAPTCHA_TIMEOUT_SECONDS: float = Field(default=5.0)
    SENDGRID_API_KEY: Optional[str] = Field(default=None)
    SENDGRID_URL: str = Field(default="https://api.sendgrid.com/v3/mail/send")
    SENDGRID_FROM_EMAIL: str = Field(default="no-reply@example.com")
    CAREERS_TO_EMAIL: Optional[str] = Field(default=None)
    CONTACT_TO_EMAIL: Optional[str] = Field(default=None)
    UPLOAD_DIR: str = Field(default="public/images/products")
    UPLOAD_URL_PREFIX: str = Field(default="/images/products")
    UPLOAD_MAX_BYTES: int = Field(default=5 * 1024 * 1024)
    CV_UPLOAD_DIR: str = Field(default="uploads/cv")
    CV_MAX_BYTES: int = Field(default=10 * 1024 * 1024)
    LOW_STOCK_THRESHOLD: int = Field(default=10)

    @model_validator(mode="after")
    def _check_rate_limits(self) -> "Settings":
        policies = (self.contact_rate_limit(), self.careers_rate_limit())
        longest = max(policy.window_ms for policy in policies)
        if self.RATE_LIMIT_IDLE_TTL_SECONDS * 1000 < longest:
            raise ValueError(
                "RATE_LIMIT_IDLE_TTL_SECONDS must cover the longest rate limit window"
            )
        return self

    def contact_rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            capacity=self.CONTACT_RATE_LIMIT_TOKENS,
            window_ms=self.CONTACT_RATE_LIMIT_WINDOW_MS,
        )

    def careers_rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            capacity=self.CAREERS_RATE_LIMIT_TOKENS,
            window_ms=self.CAREERS_RATE_LIMIT_WINDOW_MS,
        )


def _load_settings(existing: Settings | None = None) -> Settings:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(name)
        if env_value is None:
            if existing is not None and hasattr(existing, name):
                values[name] = getattr(existing, name)
                continue
            if field.is_required():
                continue
            values[name] = field.get_default(call_default_factory=True)
        else:
            values[name] = env_value

    try:
        return Settings(**values)
    except ValidationError as exc:
        missing = [
            str(error["loc"][0])
            for error in exc.errors()
            if error.get("type") == "missing" and error.get("loc")
        ]
        if missing:
            joined = ", ".join(sorted(set(missing)))
            raise RuntimeError(
                f"Missing required environment variables: {joined}"
            ) from exc
        raise


settings = _load_settings()


def reload_settings() -> Settings:
    global settings
    fresh = _load_settings(settings)
    settings.__dict__.update(fresh.__dict__)
    return settings
