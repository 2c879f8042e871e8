"""Date helpers shared by the segmentation services.

All timestamps are handled as naive UTC, the way SQLite hands them back.
Aware values (PostgreSQL ``timestamptz``) are converted to UTC and stripped.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional

SECONDS_PER_DAY = 60 * 60 * 24


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Any) -> Any:
    """Parse ISO-8601 strings (a trailing ``Z`` included); other values pass through."""
    if isinstance(value, str):
        try:
            return as_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return as_naive_utc(value)
    return value


def fractional_days_since(moment: datetime, now: Optional[datetime] = None) -> float:
    now = now or utc_now()
    return (as_naive_utc(now) - as_naive_utc(moment)).total_seconds() / SECONDS_PER_DAY


def days_since(moment: Optional[datetime], now: Optional[datetime] = None, sentinel: int = 999) -> int:
    """Whole days elapsed since ``moment``; ``sentinel`` when there is none."""
    if moment is None:
        return sentinel
    return math.floor(fractional_days_since(moment, now))
