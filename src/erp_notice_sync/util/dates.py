from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import tz
from dateutil.parser import isoparse


PORTAL_TIMESTAMP_FORMAT = "%d-%m-%Y %H:%M"
DEFAULT_PORTAL_TIMEZONE = "Asia/Kolkata"


def parse_portal_timestamp(value: Optional[str]) -> datetime:
    """
    Parse the portal's notice timestamp ("11-07-2025 10:00") into a naive, portal-local datetime.
    """
    if value is None:
        raise ValueError("parse_portal_timestamp: value is None")
    s = value.strip()
    if not s:
        raise ValueError("parse_portal_timestamp: empty string")
    return datetime.strptime(s, PORTAL_TIMESTAMP_FORMAT)


def parse_watermark(value: str, *, portal_timezone: str = DEFAULT_PORTAL_TIMEZONE) -> datetime:
    """
    Parse a caller-supplied watermark into the same naive portal-local clock as notice rows.

    Accepts either the portal format ("10-07-2025 09:00") or ISO-8601
    ("2025-07-10T03:30:00Z", "2025-07-10 09:00"). Offset-aware ISO values are converted to
    the portal timezone first; naive ISO values are taken as portal-local already.
    """
    if value is None:
        raise ValueError("parse_watermark: value is None")
    s = value.strip()
    if not s:
        raise ValueError("parse_watermark: empty string")

    try:
        return parse_portal_timestamp(s)
    except ValueError:
        pass

    dt = isoparse(s)
    if dt.tzinfo is None:
        return dt

    zone = tz.gettz(portal_timezone)
    if zone is None:
        raise ValueError(f"Unknown portal timezone: {portal_timezone!r}")
    return dt.astimezone(zone).replace(tzinfo=None)


def utc_now_iso(*, skew_seconds: float = 0.0) -> str:
    dt = datetime.now(timezone.utc) - timedelta(seconds=skew_seconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")
