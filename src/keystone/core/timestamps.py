"""
UTC timestamp utilities.

Every entity carries ``CreatedAt``/``ModifiedAt``/``DeletedAt``; this module
is the single clock they are stamped from, and the single place ISO-8601
round-tripping lives.

Tags:
    timestamps, utc, datetime, keystone-core
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime) -> str:
    """Serialize a datetime, assuming UTC for naive values."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def from_iso8601(value: str) -> datetime:
    """Parse an ISO-8601 string, accepting a trailing ``Z``."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


__all__ = [
    "utc_now",
    "to_iso8601",
    "from_iso8601",
]
