# Overview: UTC clock, ISO-8601 parsing/serialization and document period helpers.

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    """Server clock as UTC-naive; every stored timestamp uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime into UTC-naive.

    - None / "" -> None
    - naive values are taken as UTC; "Z" and "+HH:MM" offsets are converted
    - with end_of_day, a bare "YYYY-MM-DD" resolves to the last microsecond
      of that day so it can serve as an inclusive upper bound

    Raises ValueError on anything fromisoformat() rejects.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    date_only = len(s) == 10
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)

    if end_of_day and date_only:
        dt = dt + timedelta(days=1, microseconds=-1)
    return dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing 'Z'; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def month_period(now: datetime) -> str:
    """Invoice numbering period, e.g. "202610"."""
    return now.strftime("%Y%m")


def year_period(now: datetime) -> str:
    """Ticket numbering period, e.g. "2026"."""
    return now.strftime("%Y")


def elapsed_days(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Whole days between two stamps, rounded up; a same-day repair counts as 1."""
    if start is None or end is None:
        return None
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)
