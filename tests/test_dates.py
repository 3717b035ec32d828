from __future__ import annotations

from datetime import datetime

import pytest

from erp_notice_sync.util.dates import parse_portal_timestamp, parse_watermark, utc_now_iso


def test_parse_portal_timestamp() -> None:
    assert parse_portal_timestamp(" 11-07-2025 10:00 ") == datetime(2025, 7, 11, 10, 0)


@pytest.mark.parametrize("raw", [None, "", "   ", "2025-07-11 10:00", "11/07/2025 10:00", "32-07-2025 10:00"])
def test_parse_portal_timestamp_rejects_bad_values(raw) -> None:
    with pytest.raises(ValueError):
        parse_portal_timestamp(raw)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("10-07-2025 09:00", datetime(2025, 7, 10, 9, 0)),
        ("2025-07-10T09:00:00", datetime(2025, 7, 10, 9, 0)),
        ("2025-07-10T03:30:00Z", datetime(2025, 7, 10, 9, 0)),
        ("2025-07-10T09:00:00+05:30", datetime(2025, 7, 10, 9, 0)),
    ],
)
def test_parse_watermark_normalizes_to_portal_clock(raw: str, expected: datetime) -> None:
    assert parse_watermark(raw) == expected


def test_parse_watermark_honours_portal_timezone() -> None:
    assert parse_watermark("2025-07-10T12:00:00Z", portal_timezone="UTC") == datetime(2025, 7, 10, 12, 0)


@pytest.mark.parametrize("raw", ["", "yesterday"])
def test_parse_watermark_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_watermark(raw)


def test_utc_now_iso_format_and_skew() -> None:
    now = datetime.strptime(utc_now_iso(), "%Y-%m-%dT%H:%M:%SZ")
    earlier = datetime.strptime(utc_now_iso(skew_seconds=60), "%Y-%m-%dT%H:%M:%SZ")
    assert 55 <= (now - earlier).total_seconds() <= 65
