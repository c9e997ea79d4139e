"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(
        default="sqlite:///./inventory.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    catalog_cache_ttl: int = Field(default=60, description="TTL (s) for cached location/category/type listings")
    log_level: str = Field(default="INFO", description="Level for the application loggers")

    home_location_name: str = Field(
        default="Lager",
        description="Storage location whose presence marks equipment as available (compared case-insensitively)",
    )
    cascade_delete_logs: bool = Field(
        default=True,
        description="Drop an item's earlier log rows when the item is deleted; the deletion entry is always kept",
    )
    log_page_size: int = Field(default=20, description="Default page size for equipment log listings")
    equipment_page_size: int = Field(default=10, description="Default page size for equipment listings")

    users_service_port: int = 8001
    equipment_service_port: int = 8002
    catalog_service_port: int = 8003
    logs_service_port: int = 8004


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
