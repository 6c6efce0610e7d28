from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

RANGE_PRESETS = ("today", "week", "month", "year", "all")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def store_timezone(name: str | None = None) -> tzinfo:
    """
    Resolve the store's local timezone.

    Falls back to the STORE_TIMEZONE setting of the current Flask app.
    """
    if name is None:
        from flask import current_app
        name = current_app.config.get("STORE_TIMEZONE", "UTC")
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _to_utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def range_for_preset(
    preset: str,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    end_of_day: bool = False,
) -> tuple[datetime | None, datetime]:
    """
    Resolve a reporting preset into a UTC-naive (start, end) pair.

    Lower bounds sit at local midnight in the store timezone:
    - today: current day
    - week: most recent Monday
    - month: day 1 of the current month
    - year: January 1 of the current year
    - all: unbounded (None)

    The upper bound is `now`, or the last instant of the current local day
    when end_of_day is set. Ranges never extend past the current day.
    """
    if preset not in RANGE_PRESETS:
        raise ValueError(f"range must be one of: {', '.join(RANGE_PRESETS)}")

    if tz is None:
        tz = store_timezone()
    now_utc = now if now is not None else utcnow()
    local_now = now_utc.replace(tzinfo=timezone.utc).astimezone(tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    if end_of_day:
        end = _to_utc_naive(midnight + timedelta(days=1) - timedelta(microseconds=1))
    else:
        end = now_utc

    if preset == "all":
        return None, end
    if preset == "today":
        start = midnight
    elif preset == "week":
        start = midnight - timedelta(days=midnight.weekday())
    elif preset == "month":
        start = midnight.replace(day=1)
    else:
        start = midnight.replace(month=1, day=1)

    return _to_utc_naive(start), end
