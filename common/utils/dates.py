"""
Datetime helpers.

The Motor client is timezone aware, so stored datetimes come back in UTC
while request bodies may carry naive values. Normalise both before
comparing or storing.
"""

from datetime import datetime, timezone
from typing import Optional


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None
