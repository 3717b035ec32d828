from __future__ import annotations

import logging
from typing import Optional, Sequence

import requests

from .errors import DeliveryError
from .models import Notice


logger = logging.getLogger(__name__)


class NoticeDeliveryClient:
    """
    POSTs a batch of notices to the downstream webhook as one JSON array.

    One attempt per batch; any non-2xx or transport failure is a `DeliveryError`.
    """

    def __init__(self, url: str, *, timeout: float = 30.0, http: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._http = http

    def deliver(self, notices: Sequence[Notice]) -> int:
        payload = [n.to_payload() for n in notices]
        client = self._http or requests.Session()
        try:
            resp = client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DeliveryError(f"Notice delivery to {self.url} failed: {e}") from e
        finally:
            if self._http is None:
                client.close()

        if not 200 <= resp.status_code < 300:
            body = (resp.text or "")[:500]
            raise DeliveryError(
                f"Notice delivery to {self.url} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=body,
            )

        logger.info("Delivered %d notices (status=%d)", len(payload), resp.status_code)
        return len(payload)
