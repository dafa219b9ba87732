"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

BACKENDS = ("memory", "redis", "dynamodb")
SAME_SITE = ("lax", "strict", "none")


class Settings(BaseSettings):
    session_secret: str
    session_previous_secrets: list[str] = []
    cookie_name: str = "__session"
    cookie_path: str = "/"
    cookie_max_age: int = 30 * 24 * 3600
    session_https_only: bool = False
    session_same_site: str = "lax"

    session_backend: str = "memory"  # "memory", "redis" or "dynamodb"
    session_collection: str = "auth_sessions"
    session_ttl: int = 600  # seconds
    single_session: bool = False
    sliding_expiration: bool = True
    memory_sweep_interval: float = 60.0  # 0 disables the sweeper

    login_path: str = "/login"
    frontend_url: str = "http://localhost:3000"
    port: int = 3001

    redis_url: str = "redis://localhost:6379/0"
    store_timeout: float = 2.0
    log_store_timing: bool = False

    dynamodb_table: str = "auth_sessions"
    dynamodb_endpoint: str = ""  # For local DynamoDB
    aws_region: str = "us-west-2"

    model_config = {"env_prefix": "", "case_sensitive": False}

    @field_validator("session_secret")
    @classmethod
    def _secret_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Cookie secrets are required")
        return v

    @field_validator("cookie_name")
    @classmethod
    def _cookie_name_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Cookie name is required")
        return v

    @field_validator("session_backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in BACKENDS:
            raise ValueError(f"Invalid storage type. Must be one of: {', '.join(BACKENDS)}")
        return v

    @field_validator("session_same_site")
    @classmethod
    def _known_same_site(cls, v: str) -> str:
        v = v.lower()
        if v not in SAME_SITE:
            raise ValueError(f"SameSite must be one of: {', '.join(SAME_SITE)}")
        return v

    @field_validator("session_ttl", "store_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Must be positive")
        return v

    @property
    def cookie_secrets(self) -> list[str]:
        """Signing secret first, then older ones still accepted."""
        return [self.session_secret, *self.session_previous_secrets]


settings: Settings | None = None


def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = Settings()
    return settings


def override_settings(s: Settings) -> None:
    """For testing: inject a Settings instance."""
    global settings
    settings = s
