"""Shared enums for the ID generation service.

This module defines all status and outcome enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "AttemptOutcome"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class AttemptOutcome(StrEnum):
    """Outcome of a single allocation attempt, used for metrics and logging."""

    SUCCESS = "success"
    NOT_INSTALLED = "not_installed"
    TRANSIENT_ERROR = "transient_error"
    INVALID_SHARD = "invalid_shard"
