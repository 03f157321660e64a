"""
clock.py
Timezone-aware "now", local calendar fields and local-midnight instants.

Instants are aware UTC datetimes. Nothing here reads the host's local
timezone; every conversion names its timezone explicitly.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import InvalidTimezoneError
from log import get_logger

logger = get_logger(__name__)

UTC = timezone.utc


class DateParts(NamedTuple):
    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int


def validate_timezone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for ``name`` or raise InvalidTimezoneError."""
    if not name or not isinstance(name, str):
        raise InvalidTimezoneError(str(name))
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(name) from exc


@lru_cache(maxsize=64)
def resolve_timezone(name: str | None):
    """Like validate_timezone, but falls back to UTC for unknown names."""
    if not name:
        return UTC
    try:
        return validate_timezone(name)
    except InvalidTimezoneError:
        logger.warning("invalid_timezone_fallback_utc", timezone=name)
        return UTC


def now(tz_name: str | None = None) -> datetime:
    """Current instant. The timezone only matters when the instant is decomposed."""
    return datetime.now(UTC)


def as_instant(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return value.astimezone(UTC)


def date_parts(instant: datetime, tz_name: str | None) -> DateParts:
    local = as_instant(instant).astimezone(resolve_timezone(tz_name))
    return DateParts(local.year, local.month, local.day, local.hour, local.minute, local.second)


def to_local(instant: datetime, tz_name: str | None) -> datetime:
    """Naive wall-clock time of ``instant`` in ``tz_name``."""
    return as_instant(instant).astimezone(resolve_timezone(tz_name)).replace(tzinfo=None)


def from_local(wall: datetime, tz_name: str | None) -> datetime:
    """Instant (UTC) for a naive wall-clock time in ``tz_name``."""
    if wall.tzinfo is not None:
        return as_instant(wall)
    return wall.replace(tzinfo=resolve_timezone(tz_name)).astimezone(UTC)


def midnight_timestamp(instant: datetime, tz_name: str | None) -> datetime:
    """Instant of local 00:00:00 on the local calendar day of ``instant``."""
    parts = date_parts(instant, tz_name)
    local_midnight = datetime.combine(
        date(parts.year, parts.month, parts.day), time(0, 0), tzinfo=resolve_timezone(tz_name)
    )
    return local_midnight.astimezone(UTC)
