# =============================================================================
# lib/utils.py - Shared Utilities
# =============================================================================
# Common utilities used across the application.
# =============================================================================

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from pydantic import TypeAdapter


# =============================================================================
# UUID Utilities
# =============================================================================

def normalize_uuid(value: str | UUID) -> str:
    """
    Normalize a UUID to string format.

    Handles both string and UUID objects, ensuring consistent string output.

    Example:
        job_id = normalize_uuid(uuid_obj)  # "550e8400-..."
        job_id = normalize_uuid("550e8400-...")  # "550e8400-..."
    """
    return str(value) if isinstance(value, UUID) else value


# =============================================================================
# Time Utilities
# =============================================================================

def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def utc_now_iso(offset: timedelta | None = None) -> str:
    """ISO-8601 UTC timestamp, optionally shifted by `offset`."""
    moment = utc_now()
    if offset:
        moment += offset
    return moment.isoformat()


_DATETIME = TypeAdapter(datetime)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """
    Parse a Postgres/ISO timestamp into an aware datetime.

    Supabase returns timestamps like "2024-01-15T10:30:00+00:00", with a
    trailing "Z", or with a fraction of any length ("10:30:00.12345+00:00").
    Naive values are treated as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = _DATETIME.validate_python(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def from_unix(timestamp: int | None) -> str | None:
    """Convert a Unix timestamp (Stripe style) to an ISO string."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# =============================================================================
# Hashing
# =============================================================================

def md5_hex(value: str) -> str:
    """Hex MD5 digest of a UTF-8 string."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()


# =============================================================================
# Base Error Class
# =============================================================================

class ApplicationError(Exception):
    """
    Base error class for errors raised outside the HTTP layer
    (queue publishing, email delivery, provider calls in workers).

    Attributes:
        code: Error code for categorization
        message: Human-readable error message
        suggestion: Actionable suggestion for fixing the error
        details: Additional context for debugging

    Example:
        class QueuePublishError(ApplicationError):
            def __init__(self, message: str, **kwargs):
                super().__init__(message, code="QUEUE_PUBLISH_FAILED", **kwargs)
    """

    def __init__(
        self,
        message: str,
        code: str = "APPLICATION_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
            "details": self.details,
        }
