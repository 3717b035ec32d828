from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Optional

import requests

from .config import AppConfig
from .delivery import NoticeDeliveryClient
from .errors import ConfigurationError, NoticeSyncError, UnexpectedRunError
from .models import Credentials
from .portal.browser import BrowserLauncher, launch_chromium
from .portal.notices import NoticeExtractor
from .portal.otp import OtpRendezvousClient
from .portal.selectors import PortalSelectors
from .portal.session import PortalSession
from .state import StateStore
from .util.dates import parse_watermark


logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    run_id: Optional[int]
    thread: threading.Thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run finishes; returns False if it is still running after `timeout`."""
        self.thread.join(timeout)
        return not self.thread.is_alive()


class SyncOrchestrator:
    """
    One sync run: log in, extract notices newer than the watermark, deliver them, release the browser.

    Runs do not coordinate with each other. If the portal rejects concurrent logins for one roll number,
    callers must serialize runs for that identity themselves.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        launcher: Optional[BrowserLauncher] = None,
        http: Optional[requests.Session] = None,
        state: Optional[StateStore] = None,
        selectors: Optional[PortalSelectors] = None,
    ) -> None:
        self.config = config
        self.selectors = selectors or PortalSelectors()
        self._http = http
        self._state = state
        self._launcher = launcher or partial(
            launch_chromium,
            headless=config.portal.headless,
            slow_mo_ms=config.portal.slow_mo_ms,
            launch_timeout_ms=config.portal.timeouts.browser_launch_ms,
        )

    def run(self, credentials: Credentials, watermark: str) -> None:
        """
        Run one sync in the calling thread. Raises the failing step's error after the browser is released.
        """
        run_id = self._state.record_run_start() if self._state is not None else None
        self._run(credentials, watermark, run_id=run_id)

    def start(self, credentials: Credentials, watermark: str) -> RunHandle:
        """
        Start a sync on a background thread and return immediately.

        Failures never reach the caller; they are logged and recorded in the run log.
        """
        run_id = self._state.record_run_start() if self._state is not None else None
        thread = threading.Thread(
            target=self._run_quietly,
            args=(credentials, watermark, run_id),
            name=f"notice-sync-{run_id if run_id is not None else 'adhoc'}",
            daemon=True,
        )
        thread.start()
        logger.info("Sync run started in background (run_id=%s)", run_id)
        return RunHandle(run_id=run_id, thread=thread)

    def _run_quietly(self, credentials: Credentials, watermark: str, run_id: Optional[int]) -> None:
        try:
            self._run(credentials, watermark, run_id=run_id)
        except Exception:
            # Already logged and recorded by _run; keep the traceback at debug level.
            logger.debug("Background run ended with an error (run_id=%s).", run_id, exc_info=True)

    def _run(self, credentials: Credentials, watermark: str, *, run_id: Optional[int]) -> None:
        t0 = time.time()
        step = "configure"
        session: Optional[PortalSession] = None
        delivered = 0
        logger.info("Run started (run_id=%s roll_no=%s watermark=%s)", run_id, credentials.roll_no, watermark)
        try:
            # Fail fast, before any browser or network use.
            self.config.require_endpoints()
            boundary = self._parse_watermark(watermark)

            session = self._new_session(credentials)
            step = "init"
            session.init()
            step = "login"
            session.login()

            step = "scrape"
            extractor = NoticeExtractor(
                session.get_page(),
                listing_url=self.config.portal.listing_url,
                watermark=boundary,
                selectors=self.selectors,
                timeouts=self.config.portal.timeouts,
                debug_dir=self.config.portal.debug_dir,
            )
            notices = extractor.scrape()

            if notices:
                step = "deliver"
                delivered = NoticeDeliveryClient(
                    self.config.delivery.url,
                    timeout=self.config.delivery.timeout_seconds,
                    http=self._http,
                ).deliver(notices)
            else:
                logger.info("No notices newer than the watermark; nothing to deliver.")
        except Exception as e:
            if isinstance(e, NoticeSyncError):
                e.step = step
                failure: NoticeSyncError = e
            else:
                failure = UnexpectedRunError(f"{type(e).__name__}: {e}")
                failure.step = step
            logger.error(
                "Run failed (run_id=%s step=%s error=%s seconds=%.2f): %s",
                run_id,
                step,
                type(e).__name__,
                time.time() - t0,
                e,
            )
            self._record_finish(run_id, ok=False, step=step, message=f"{type(e).__name__}: {e}")
            if failure is not e:
                raise failure from e
            raise
        finally:
            if session is not None:
                cleanup_error = session.close()
                if cleanup_error is not None:
                    logger.warning("Ignoring browser cleanup failure (run_id=%s): %s", run_id, cleanup_error)

        self._record_finish(run_id, ok=True, step="done", message=None, delivered=delivered)
        logger.info("Run finished (run_id=%s ok=true delivered=%d seconds=%.2f)", run_id, delivered, time.time() - t0)

    def _parse_watermark(self, watermark: str) -> datetime:
        try:
            return parse_watermark(watermark, portal_timezone=self.config.portal.timezone)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid watermark {watermark!r}: {e}") from e

    def _new_session(self, credentials: Credentials) -> PortalSession:
        return PortalSession(
            credentials,
            OtpRendezvousClient(self.config.otp, http=self._http),
            login_url=self.config.portal.login_url,
            launcher=self._launcher,
            selectors=self.selectors,
            timeouts=self.config.portal.timeouts,
            debug_dir=self.config.portal.debug_dir,
        )

    def _record_finish(
        self,
        run_id: Optional[int],
        *,
        ok: bool,
        step: str,
        message: Optional[str],
        delivered: Optional[int] = None,
    ) -> None:
        if self._state is None or run_id is None:
            return
        try:
            self._state.record_run_finish(run_id, ok=ok, step=step, message=message, delivered=delivered)
        except Exception:
            # The run outcome is already in the log; a broken run log must not change it.
            logger.warning("Failed to record run finish (run_id=%s).", run_id, exc_info=True)
