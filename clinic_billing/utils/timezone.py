# FILE: clinic_billing/utils/timezone.py
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Returns a *naive* datetime representing UTC time.
    Keeps comparisons safe against naive DateTime columns.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
