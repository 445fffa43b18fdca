"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_bool(cls, ok: bool) -> "HealthStatus":
        return cls.HEALTHY if ok else cls.UNHEALTHY


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Outcome of a resolution cache lookup."""

    HIT = "hit"
    MISS = "miss"
    UNAVAILABLE = "unavailable"
