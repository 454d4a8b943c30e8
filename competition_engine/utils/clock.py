# utils/clock.py
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """All datetimes in the project are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are converted to UTC and stripped; naive ones are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """The caller's ``now`` as naive UTC, or the current time."""
    return as_naive_utc(now) if now is not None else utc_now()
