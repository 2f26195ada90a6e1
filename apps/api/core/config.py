"""Centralized application configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance. Supabase and Redis
settings are only required when the matching backend is selected.
"""

from fastapi import Request
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    HOST: str = Field(default="127.0.0.1", description="Bind address")
    PORT: int = Field(default=8000, ge=1, le=65535, description="Bind port")

    # CORS
    ALLOWED_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated allowed origins for CORS",
    )

    # Sessions
    SESSION_COOKIE_NAME: str = Field(default="ledger_session", description="Session cookie name")
    SESSION_TTL_SECONDS: int = Field(default=3600, ge=1, description="Fixed session lifetime")
    SESSION_SLIDING: bool = Field(
        default=False,
        description="Renew the expiry on every successful validation",
    )
    SESSION_COOKIE_SECURE: bool = Field(default=False, description="Send cookie over HTTPS only")
    SESSION_BACKEND: str = Field(default="memory", description="memory or redis")

    # Redis
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (session store)",
    )

    # Credentials
    AUTH_BACKEND: str = Field(default="static", description="static or supabase")
    AUTH_USERS: str = Field(
        default="",
        description="Comma-separated username:bcrypt_hash pairs for the static backend",
    )

    # Transaction store
    STORE_BACKEND: str = Field(default="memory", description="memory or supabase")
    STORE_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    STORE_RETRY_BASE_DELAY: float = Field(default=0.1, ge=0)
    STORE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # Supabase
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_ANON_KEY: str = Field(default="", description="Supabase anon/public key")
    SUPABASE_SERVICE_KEY: str = Field(
        default="",
        description="Supabase service-role key (transaction store)",
    )

    # Uploads
    MAX_UPLOAD_BYTES: int = Field(default=10 * 1024 * 1024, ge=1)
    DETECTOR_SAMPLE_ROWS: int = Field(default=50, ge=1)

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )

    # App
    APP_VERSION: str = Field(default="0.1.0", description="Application version")

    @model_validator(mode="after")
    def _check_backends(self) -> "Settings":
        if self.SESSION_BACKEND not in {"memory", "redis"}:
            raise ValueError("SESSION_BACKEND must be 'memory' or 'redis'")
        if self.STORE_BACKEND not in {"memory", "supabase"}:
            raise ValueError("STORE_BACKEND must be 'memory' or 'supabase'")
        if self.AUTH_BACKEND not in {"static", "supabase"}:
            raise ValueError("AUTH_BACKEND must be 'static' or 'supabase'")
        if self.STORE_BACKEND == "supabase" and not (self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY):
            raise ValueError("Supabase store requires SUPABASE_URL and SUPABASE_SERVICE_KEY")
        if self.AUTH_BACKEND == "supabase" and not (self.SUPABASE_URL and self.SUPABASE_ANON_KEY):
            raise ValueError("Supabase auth requires SUPABASE_URL and SUPABASE_ANON_KEY")
        return self

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def auth_users(self) -> dict[str, str]:
        """Parse AUTH_USERS into {username: bcrypt_hash}."""
        users = {}
        for entry in self.AUTH_USERS.split(","):
            username, sep, hashed = entry.strip().partition(":")
            if sep and username and hashed:
                users[username] = hashed
        return users

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Factory for Settings; tests build their own instances."""
    return Settings()


settings = get_settings()


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was created with.

    Apps assembled by create_app() carry them on ``app.state.settings``;
    bare routers mounted in tests fall back to the environment defaults.
    """
    return getattr(request.app.state, "settings", None) or settings
