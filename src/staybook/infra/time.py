"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_now(tz_name: str) -> datetime:
    """Return the current wall-clock time at a property (timezone-aware)."""
    return utc_now().astimezone(ZoneInfo(tz_name))
