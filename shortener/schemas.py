"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input validation, output
serialization and the JSON payloads stored in the Redis fast store.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str (checked by the validation gate, not here)
    ├─ custom_alias: str | None (3-20 alphanumerics)
    └─ expires_at: datetime | None (must be in the future)

    ShortLinkResponse (Output)
    ├─ code, short_url, original_url
    ├─ click_count
    └─ created_at, expires_at, last_accessed_at

    AnalyticsResponse (Output, also cached)
    ├─ code, original_url, click_count, days
    ├─ created_at, expires_at, last_accessed_at
    └─ daily_stats: list[DailyStat]

    CachedShortLink (Redis payload for url:<code> and lurl:<hash>)

    HealthResponse / ErrorResponse (Output)

Key Behaviours
===============
- Naive datetimes are interpreted as UTC.
- URL acceptance is the validation gate's job so the core reports InvalidURL
  with a reason instead of a generic 422.
- Models are configured for ORM attribute mapping.

Classes:
    ShortenRequest:  Input schema for shorten requests.
    ShortLinkResponse:  Output schema for created/returned links.
    DailyStat:  Clicks aggregated for one day.
    AnalyticsResponse:  Output schema for analytics reads.
    CachedShortLink:  Cache payload for a short link.
    HealthResponse:  Output schema for health checks.
    ErrorResponse:  Output schema for error bodies.
"""

import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus
from shortener.models import ShortLink, as_utc, utcnow

__all__ = [
    "ShortenRequest",
    "ShortLinkResponse",
    "DailyStat",
    "AnalyticsResponse",
    "CachedShortLink",
    "HealthResponse",
    "ErrorResponse",
]


class ShortenRequest(BaseModel):
    url: str
    custom_alias: Optional[str] = None
    expires_at: Optional[datetime.datetime] = None

    @field_validator("custom_alias")
    @classmethod
    def validate_custom_alias(cls, v: str | None) -> str | None:
        if v is not None:
            if len(v) < 3 or len(v) > 20:
                raise ValueError("Custom alias must be between 3 and 20 characters")
            if not v.isalnum() or not v.isascii():
                raise ValueError("Custom alias must be alphanumeric")
        return v

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        if v is not None:
            v = as_utc(v)
            if v <= utcnow():
                raise ValueError("Expiry must be in the future")
        return v


class ShortLinkResponse(BaseModel):
    code: str
    short_url: str
    original_url: str
    click_count: int
    created_at: datetime.datetime
    expires_at: Optional[datetime.datetime] = None
    last_accessed_at: Optional[datetime.datetime] = None

    @classmethod
    def from_model(cls, link: ShortLink, base_url: str) -> "ShortLinkResponse":
        return cls(
            code=link.code,
            short_url=f"{base_url.rstrip('/')}/{link.code}",
            original_url=link.original_url,
            click_count=link.click_count or 0,
            created_at=link.created_at,
            expires_at=link.expires_at,
            last_accessed_at=link.last_accessed_at,
        )


class DailyStat(BaseModel):
    date: str = Field(..., description="Day in ISO format, e.g. '2024-05-01'")
    clicks: int = Field(0, ge=0)


class AnalyticsResponse(BaseModel):
    code: str
    original_url: str
    click_count: int
    days: int
    created_at: datetime.datetime
    expires_at: Optional[datetime.datetime] = None
    last_accessed_at: Optional[datetime.datetime] = None
    daily_stats: list[DailyStat] = Field(default_factory=list)


class CachedShortLink(BaseModel):
    """Redis cache payload for a short link, keyed by code and by original URL."""

    id: Optional[int] = None
    code: str
    original_url: str
    click_count: int = 0
    created_at: datetime.datetime
    expires_at: Optional[datetime.datetime] = None
    last_accessed_at: Optional[datetime.datetime] = None

    model_config = {"from_attributes": True}

    def to_model(self) -> ShortLink:
        return ShortLink(
            id=self.id,
            code=self.code,
            original_url=self.original_url,
            click_count=self.click_count,
            created_at=self.created_at,
            expires_at=self.expires_at,
            last_accessed_at=self.last_accessed_at,
        )


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    timestamp: datetime.datetime = Field(default_factory=utcnow)


class ErrorResponse(BaseModel):
    error: str
    message: str
    code: int
