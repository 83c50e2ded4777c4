from __future__ import annotations

import calendar
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(utcnow())


def to_iso(dt: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with a trailing Z (naive input is treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar-aware month arithmetic.

    The day of month is clamped to the last day of the target month, so
    2024-01-31 + 1 month is 2024-02-29 and 2024-01-31 + 12 months is 2025-01-31.
    """
    total = dt.year * 12 + (dt.month - 1) + int(months)
    year, month0 = divmod(total, 12)
    month = month0 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))
