from __future__ import annotations

import pytest

from erp_notice_sync.config import OtpConfig
from erp_notice_sync.errors import OtpTimeoutError
from erp_notice_sync.portal import otp as otp_module
from erp_notice_sync.portal.otp import OtpRendezvousClient, fetch_otp

from fakes import FakeHttp, FakeResponse, connection_error


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(otp_module.time, "sleep", lambda s: recorded.append(s))
    return recorded


def _not_found() -> FakeResponse:
    return FakeResponse(404, {"message": "No OTP found yet"})


def test_fetch_otp_returns_code_after_not_found_responses(sleeps: list[float]) -> None:
    http = FakeHttp(
        [
            _not_found(),
            _not_found(),
            _not_found(),
            FakeResponse(200, {"otp": "437311", "createdAt": "2025-07-11 10:00:05"}),
        ]
    )

    code = fetch_otp(
        "https://otp.example.test/otp/",
        "23CS10012",
        "2025-07-11T10:00:00Z",
        6,
        2.0,
        http=http,
    )

    assert code == "437311"
    assert len(http.gets) == 4
    # initial wait, then doubling delays between attempts
    assert sleeps == [2.0, 2.0, 4.0, 8.0]
    assert sum(sleeps) >= 2.0 + 2.0 + 2 * 2.0


def test_fetch_otp_queries_identity_and_requested_at(sleeps: list[float]) -> None:
    http = FakeHttp([FakeResponse(200, {"otp": 123456, "createdAt": "x"})])

    code = fetch_otp("https://otp.example.test/otp", "23CS10012", "2025-07-11T10:00:00Z", 3, 1.0, http=http)

    assert code == "123456"
    assert http.gets[0]["url"] == "https://otp.example.test/otp/23CS10012"
    assert http.gets[0]["params"] == {"requestedAt": "2025-07-11T10:00:00Z"}
    assert http.gets[0]["timeout"] == 10.0
    assert sleeps == [1.0]


def test_fetch_otp_exhausting_attempts_raises_timeout(sleeps: list[float]) -> None:
    http = FakeHttp([_not_found() for _ in range(3)])

    with pytest.raises(OtpTimeoutError) as ei:
        fetch_otp("https://otp.example.test/otp", "23CS10012", "2025-07-11T10:00:00Z", 3, 1.0, http=http)

    err = ei.value
    assert err.attempts == 3
    assert err.not_found_count == 3
    assert err.transport_error_count == 0
    assert err.last_error is None
    assert len(http.gets) == 3
    # No sleep after the final attempt.
    assert sleeps == [1.0, 1.0, 2.0]


def test_fetch_otp_retries_transport_errors_and_reports_last_one(sleeps: list[float]) -> None:
    http = FakeHttp(
        [
            connection_error("connection refused"),
            FakeResponse(500, text="boom"),
            _not_found(),
        ]
    )

    with pytest.raises(OtpTimeoutError) as ei:
        fetch_otp("https://otp.example.test/otp", "23CS10012", "t", 3, 0.5, http=http)

    err = ei.value
    assert err.transport_error_count == 2
    assert err.not_found_count == 1
    assert "HTTP 500" in str(err.last_error)
    assert "last transport error" in str(err)


def test_fetch_otp_recovers_after_transport_error(sleeps: list[float]) -> None:
    http = FakeHttp([connection_error(), FakeResponse(200, {"otp": "000123", "createdAt": "x"})])

    assert fetch_otp("https://otp.example.test/otp", "23CS10012", "t", 5, 1.0, http=http) == "000123"


def test_fetch_otp_treats_unparseable_200_as_transport_error(sleeps: list[float]) -> None:
    http = FakeHttp([FakeResponse(200, None, text="<html>"), FakeResponse(200, {"message": "no otp key"})])

    with pytest.raises(OtpTimeoutError) as ei:
        fetch_otp("https://otp.example.test/otp", "23CS10012", "t", 2, 1.0, http=http)

    assert ei.value.transport_error_count == 2


def test_fetch_otp_caps_backoff_delay(sleeps: list[float]) -> None:
    http = FakeHttp([_not_found() for _ in range(6)])

    with pytest.raises(OtpTimeoutError):
        fetch_otp("https://otp.example.test/otp", "23CS10012", "t", 6, 10.0, max_delay=30.0, http=http)

    assert sleeps == [10.0, 10.0, 20.0, 30.0, 30.0, 30.0]


def test_fetch_otp_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        fetch_otp("https://otp.example.test/otp", "23CS10012", "t", 0, 1.0, http=FakeHttp())


def test_rendezvous_client_uses_config(sleeps: list[float]) -> None:
    cfg = OtpConfig(
        base_url="https://otp.example.test/otp/",
        max_attempts=2,
        initial_delay_seconds=3.0,
        max_delay_seconds=4.0,
        request_timeout_seconds=5.0,
    )
    http = FakeHttp([_not_found(), FakeResponse(200, {"otp": "654321", "createdAt": "x"})])

    code = OtpRendezvousClient(cfg, http=http).fetch_otp(identity="23CS10012", requested_at="t")

    assert code == "654321"
    assert http.gets[0]["url"] == "https://otp.example.test/otp/23CS10012"
    assert http.gets[0]["timeout"] == 5.0
    assert sleeps == [3.0, 3.0]
