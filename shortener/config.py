"""Configuration management for the URL shortener application.

This module provides centralized configuration management using Pydantic BaseSettings
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
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    node_id = settings.NODE_ID

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- NODE_ID is range-checked by the ID generator at startup, not here, so a
  bad value surfaces as InvalidNodeID from the same place in every process.
- URL_CACHE_TTL_SECONDS must stay longer than ANALYTICS_CACHE_TTL_SECONDS;
  analytics snapshots tolerate more staleness than code mappings.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (optional fast store)
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_OP_TIMEOUT_SECONDS: float = 0.25

    # Snowflake ID generation
    NODE_ID: int = 0
    SHORT_CODE_MIN_LENGTH: int = 6

    # Cache TTLs
    URL_CACHE_TTL_SECONDS: int = 3600
    ANALYTICS_CACHE_TTL_SECONDS: int = 900
    CLICK_COUNTER_TTL_SECONDS: int = 86400

    # Fire-and-forget click dispatch
    CLICK_QUEUE_SIZE: int = 10000
    CLICK_WORKER_COUNT: int = 4

    # Analytics window
    ANALYTICS_DEFAULT_DAYS: int = 30
    ANALYTICS_MAX_DAYS: int = 365

    # URL validation gate
    MAX_URL_LENGTH: int = 2048
    BLOCKED_DOMAINS: list[str] = ["malware.example.com", "phishing.example.com"]

    # Background maintenance sweep
    SWEEP_INTERVAL_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @field_validator("SHORT_CODE_MIN_LENGTH", "CLICK_QUEUE_SIZE", "CLICK_WORKER_COUNT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
