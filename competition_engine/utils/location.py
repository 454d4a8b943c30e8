# utils/location.py
"""
Deterministic location keys for leaderboards and tie-breaks.

Council boards are keyed by ``region::council``, Regional boards by the
region alone and National boards share the ``national`` sentinel.
"""
from typing import Optional

from competition_engine.db.enums import Level

NATIONAL_KEY = "national"
SEPARATOR = "::"
UNKNOWN = "unknown"


def _part(value: Optional[str]) -> str:
    if value is None:
        return UNKNOWN
    value = value.strip()
    return value or UNKNOWN


def _unpart(value: str) -> Optional[str]:
    return None if value == UNKNOWN else value


def location_key(level: Level, region: Optional[str] = None, council: Optional[str] = None) -> str:
    if level == Level.NATIONAL:
        return NATIONAL_KEY
    if level == Level.REGIONAL:
        return _part(region)
    return f"{_part(region)}{SEPARATOR}{_part(council)}"


def parse_location_key(level: Level, key: str) -> tuple[Optional[str], Optional[str]]:
    """Inverse of :func:`location_key`; returns ``(region, council)``."""
    if level == Level.NATIONAL:
        return None, None
    if level == Level.REGIONAL:
        return _unpart(key), None
    region, sep, council = key.partition(SEPARATOR)
    if not sep:
        return _unpart(region), None
    return _unpart(region), _unpart(council)


def normalize(value: Optional[str]) -> str:
    """Case/whitespace-insensitive form used by round matching."""
    return (value or "").strip().lower()
