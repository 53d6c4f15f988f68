from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ..models.user import utcnow


def ensure_utc(dt: datetime) -> datetime:
    """
    SQLite hands back naive datetimes even when we stored aware ones.
    Treat naive values as UTC so comparisons against utcnow() work.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    return ensure_utc(now) if now is not None else utcnow()
