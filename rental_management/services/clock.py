from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    # Stored datetimes are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
