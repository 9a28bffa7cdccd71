"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_epoch_seconds(value: Any) -> datetime | None:
    """Convert a provider epoch-seconds value (int, float or numeric str).

    Returns None for missing, non-numeric or unrepresentable values
    (NaN, infinities, years outside the platform range).
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
