"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. ENCRYPTION_KEY has no default: the app refuses to start without
it (see security/crypto.py).

Usage:
    from quest_trust.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the quest verification service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_allow_origins: str = "*"

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://quest_trust:quest_trust_dev"
        "@localhost:5432/quest_trust"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (only used by the optional replay guard) ---
    redis_url: str = "redis://localhost:6379/0"
    replay_guard_enabled: bool = False

    # --- Secrets at rest ---
    encryption_key: SecretStr | None = None
    encryption_kdf_salt: str = "saas-quest-salt"

    # --- Identity (resolved upstream by the auth layer) ---
    auth_user_header: str = "X-User-ID"

    # --- Payment provider ---
    payment_api_base_url: str = "https://api.stripe.com"
    payment_key_prefix: str = "sk_"

    # --- Outbound calls ---
    outbound_timeout_seconds: float = 10.0
    server_status_timeout_seconds: float = 15.0
    server_status_max_skew_seconds: int = 300
    server_status_path: str = "/api/saas-quest/status"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def encryption_key_value(self) -> str:
        """Plain encryption secret, or "" when unset."""
        if self.encryption_key is None:
            return ""
        return self.encryption_key.get_secret_value()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
