"""Pydantic schemas for the mapping record and the HTTP API.

Schema Hierarchy
=================
::
    UrlMapping (domain record, also the cache payload)
    ├─ short_code: str
    ├─ original_url: str
    ├─ created_at: datetime
    ├─ expires_at: datetime | None
    └─ hit_count: int

    ShortenRequest (Input)
    ├─ url: str
    └─ expires_in_seconds: int | None

    ShortenResponse / UrlInfoResponse / ResolveResponse / HealthResponse (Output)

Key Behaviours
===============
- UrlMapping is built from ORM rows via from_attributes and serialized to
  JSON for Redis, so the cache always holds a copy, never the ORM instance.
- URL syntax is checked by the service, not here, so direct callers and HTTP
  callers share one validation path and one error type.
- All datetime fields are timezone-aware.
- expires_in_seconds outside what timedelta can hold is a 422; the configured
  MAX_EXPIRY_SECONDS ceiling and positivity are checked by the service (400).
"""

import datetime

from pydantic import BaseModel, Field

from shortener.enums import HealthStatus

__all__ = [
    "UrlMapping",
    "ShortenRequest",
    "ShortenResponse",
    "ResolveResponse",
    "UrlInfoResponse",
    "HealthResponse",
]

# Largest whole-second duration datetime.timedelta can hold.
MAX_TIMEDELTA_SECONDS = datetime.timedelta.max.days * 24 * 3600


class UrlMapping(BaseModel):
    short_code: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    hit_count: int = Field(0, ge=0)

    model_config = {"from_attributes": True}

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class ShortenRequest(BaseModel):
    url: str = Field(..., description="Absolute URL to shorten, e.g. 'https://example.com/a'")
    expires_in_seconds: int | None = Field(
        None,
        ge=-MAX_TIMEDELTA_SECONDS,
        le=MAX_TIMEDELTA_SECONDS,
        description="Optional lifetime of the short URL in seconds.",
    )


class ShortenResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class ResolveResponse(BaseModel):
    original_url: str


class UrlInfoResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    hit_count: int


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
