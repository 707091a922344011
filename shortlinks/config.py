"""Configuration management for the short link service.

This module provides centralized configuration using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
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
**Step 1 — Import**::
    from shortlinks.config import get_settings

**Step 2 — Read values**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables (and an optional ``.env`` file) override defaults.
- ``CACHE_BACKEND`` selects the in-process cache or the shared Redis cache.
- ``REDIRECT_STATUS_CODE`` is restricted to the HTTP redirect family.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shortlinks.enums import CacheBackend


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Link cache
    CACHE_BACKEND: CacheBackend = CacheBackend.MEMORY
    CACHE_TTL_SECONDS: int = 3600
    CACHE_MAX_CAPACITY: int = 10_000
    CACHE_KEY_PREFIX: str = "link"
    REDIS_URL: str = "redis://redis:6379/0"

    # Keys and validation limits
    KEY_LENGTH: int = 7
    KEY_MAX_ATTEMPTS: int = 10
    ALIAS_MAX_LENGTH: int = 10
    URL_MAX_LENGTH: int = 2048

    # Analytics
    ANALYTICS_DEFAULT_DAYS: int = 30
    ANALYTICS_MAX_DAYS: int = 365
    ANALYTICS_TOP_N: int = 10
    CAPTURE_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Listing
    LIST_DEFAULT_LIMIT: int = 50
    LIST_MAX_LIMIT: int = 100
    DETAILED_ANALYTICS_MAX_LIMIT: int = 1000

    # Redirects
    REDIRECT_STATUS_CODE: int = 307

    # Expired link sweeper (runs out of process)
    REAPER_INTERVAL_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @field_validator("REDIRECT_STATUS_CODE")
    @classmethod
    def validate_redirect_status(cls, v: int) -> int:
        if v not in (301, 302, 307, 308):
            raise ValueError("REDIRECT_STATUS_CODE must be one of 301, 302, 307, 308")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
