from __future__ import annotations

import logging
import time
from typing import Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from ..config import OtpConfig
from ..errors import OtpTimeoutError
from ..models import OtpRecord


logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY_SECONDS = 30.0


def _mask(code: str) -> str:
    return f"{code[:2]}****{code[-2:]}" if len(code) >= 4 else "***"


def fetch_otp(
    source_url: str,
    identity: str,
    requested_at: str,
    max_attempts: int,
    initial_delay: float,
    *,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    request_timeout: float = 10.0,
    http: Optional[requests.Session] = None,
) -> str:
    """
    Poll the OTP store until it holds a code created after `requested_at` for `identity`.

    The portal mails the code at an unpredictable time, so this waits `initial_delay` first and then
    retries with doubling delays (capped at `max_delay`). A 404 means "not yet"; any other failure is a
    transport error. Both are retried until `max_attempts` is exhausted, and counted separately so the
    final `OtpTimeoutError` says which one kept happening.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    url = f"{source_url.rstrip('/')}/{quote(identity, safe='')}"
    params = {"requestedAt": requested_at}
    client = http or requests.Session()

    not_found = 0
    transport_errors = 0
    last_error: Optional[BaseException] = None
    delay = initial_delay or 1.0

    logger.info("Waiting %.1fs for the OTP to be dispatched (identity=%s).", initial_delay, identity)
    time.sleep(initial_delay)

    try:
        for attempt in range(1, max_attempts + 1):
            try:
                resp = client.get(url, params=params, timeout=request_timeout)
                if resp.status_code == 200:
                    record = OtpRecord.model_validate(resp.json())
                    logger.info(
                        "Fetched OTP (attempt=%d created_at=%s code=%s)",
                        attempt,
                        record.created_at,
                        _mask(record.code),
                    )
                    return record.code
                if resp.status_code == 404:
                    not_found += 1
                    logger.info("OTP not available yet (attempt %d/%d).", attempt, max_attempts)
                else:
                    transport_errors += 1
                    last_error = RuntimeError(f"OTP store returned HTTP {resp.status_code}: {resp.text[:200]}")
                    logger.warning("OTP poll failed (attempt %d/%d): %s", attempt, max_attempts, last_error)
            except (requests.RequestException, ValueError, ValidationError) as e:
                # ValueError covers an unparseable JSON body on a 200.
                transport_errors += 1
                last_error = e
                logger.warning("OTP poll failed (attempt %d/%d): %s", attempt, max_attempts, e)

            if attempt < max_attempts:
                time.sleep(delay)
                delay = min(delay * 2, max_delay)
    finally:
        if http is None:
            client.close()

    raise OtpTimeoutError(
        attempts=max_attempts,
        not_found_count=not_found,
        transport_error_count=transport_errors,
        last_error=last_error,
    )


class OtpRendezvousClient:
    """
    `fetch_otp` bound to the configured OTP store and retry budget.
    """

    def __init__(self, cfg: OtpConfig, *, http: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self._http = http

    def fetch_otp(self, *, identity: str, requested_at: str) -> str:
        return fetch_otp(
            self.cfg.base_url,
            identity,
            requested_at,
            self.cfg.max_attempts,
            self.cfg.initial_delay_seconds,
            max_delay=self.cfg.max_delay_seconds,
            request_timeout=self.cfg.request_timeout_seconds,
            http=self._http,
        )
