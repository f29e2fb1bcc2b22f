from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], *, end_of_range: bool = False) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into the canonical UTC-naive datetime.

    - None / "" -> None
    - naive timestamps are already UTC; "...Z" and "+/-HH:MM" offsets are converted
    - a bare date ("2026-03-01") is midnight of that day, or midnight of the next
      day when it closes an exclusive range (end_of_range=True), so a report for
      "2026-03-01".."2026-03-31" includes sales rung up on the 31st
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if len(s) == 10:
        day = date.fromisoformat(s)
        if end_of_range:
            day += timedelta(days=1)
        return datetime.combine(day, time.min)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
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
