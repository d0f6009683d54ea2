"""Time utilities (UTC now, naive-datetime normalisation)."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC.

    SQLite hands back naive values even for ``DateTime(timezone=True)`` columns,
    so every comparison against ``utc_now()`` goes through this first.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def yyyymmdd(value: datetime | None = None) -> str:
    return (value or utc_now()).strftime("%Y%m%d")

__all__ = ["utc_now", "ensure_aware", "yyyymmdd"]
