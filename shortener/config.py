"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram: get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1: Import**::
    from shortener.config import get_settings

**Step 2: Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3: Override in tests**::
    settings = Settings(CACHE_TTL_SECONDS=5)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- COUNTER_REDIS_URL falls back to REDIS_URL when unset, so a single Redis
  can serve both the id counter and the resolution cache.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (mapping store)
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis (resolution cache + id counter)
    REDIS_URL: str = "redis://redis:6379/0"
    COUNTER_REDIS_URL: str | None = None
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 1.0

    # Id allocation
    COUNTER_KEY: str = "url_shortener_counter"
    ALLOCATOR_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    ALLOCATOR_BACKOFF_BASE_SECONDS: float = Field(default=0.05, ge=0)
    ALLOCATOR_BACKOFF_MAX_SECONDS: float = Field(default=1.0, ge=0)

    # Resolution cache
    CACHE_KEY_PREFIX: str = "url"
    CACHE_TTL_SECONDS: int = Field(default=3600, ge=1)

    # Short URL rules
    MAX_URL_LENGTH: int = 2048
    DEFAULT_EXPIRY_SECONDS: int | None = None
    MAX_EXPIRY_SECONDS: int = Field(default=10 * 365 * 24 * 3600, ge=1)

    # Expiry sweeper
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    EXPIRY_SWEEP_BATCH_SIZE: int = Field(default=500, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def counter_redis_url(self) -> str:
        return self.COUNTER_REDIS_URL or self.REDIS_URL


@lru_cache()
def get_settings() -> Settings:
    return Settings()
