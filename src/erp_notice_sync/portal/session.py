from __future__ import annotations

import enum
import logging
from typing import Optional, Protocol

from ..config import PortalTimeouts
from ..errors import (
    BrowserInitError,
    CleanupError,
    FormNotFoundError,
    LoginRejectedError,
    NavigationError,
    SessionNotReadyError,
    UnknownSecurityQuestionError,
)
from ..models import Credentials
from ..util.dates import utc_now_iso
from .browser import BrowserHandle, BrowserLauncher
from .page import PageInteractionError, PortalPage
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    SECURITY_ANSWERED = "security_answered"
    OTP_REQUESTED = "otp_requested"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"
    CLOSED = "closed"


class OtpSource(Protocol):
    def fetch_otp(self, *, identity: str, requested_at: str) -> str: ...


class PortalSession:
    """
    One browser + one page, logged into the ERP portal with password, security question and e-mailed OTP.

    Not shareable: one instance per login attempt. `close()` must be called on every path; it never raises.
    """

    def __init__(
        self,
        credentials: Credentials,
        otp_client: OtpSource,
        *,
        login_url: str,
        launcher: BrowserLauncher,
        selectors: Optional[PortalSelectors] = None,
        timeouts: Optional[PortalTimeouts] = None,
        debug_dir: str = "data/debug",
    ) -> None:
        self.credentials = credentials
        self.otp_client = otp_client
        self.login_url = login_url
        self.selectors = selectors or PortalSelectors()
        self.timeouts = timeouts or PortalTimeouts()
        self.debug_dir = debug_dir
        self._launcher = launcher
        self._handle: Optional[BrowserHandle] = None
        self.state = SessionState.CREATED

    def __enter__(self) -> "PortalSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init(self) -> None:
        if self.state is SessionState.CLOSED:
            raise SessionNotReadyError("Session is closed; create a new session for another login attempt.")
        if self._handle is not None:
            logger.warning("Session already initialized (state=%s); ignoring repeated init().", self.state.value)
            return

        try:
            self._handle = self._launcher()
        except Exception as e:
            self.state = SessionState.FAILED
            raise BrowserInitError(f"Failed to initialize browser: {e}") from e
        self.state = SessionState.INITIALIZED

    def login(self) -> None:
        if self.state is not SessionState.INITIALIZED or self._handle is None:
            raise SessionNotReadyError(f"login() requires an initialized session (state={self.state.value})")

        page = self._handle.page
        try:
            self._open_login_page(page)
            self._submit_credentials(page)
            self.state = SessionState.CREDENTIALS_SUBMITTED

            self._answer_security_question(page)
            self.state = SessionState.SECURITY_ANSWERED

            requested_at = self._request_otp(page)
            self.state = SessionState.OTP_REQUESTED

            logger.info("Fetching OTP (requested_at=%s)", requested_at)
            code = self.otp_client.fetch_otp(identity=self.credentials.roll_no, requested_at=requested_at)

            self._submit_otp(page, code)
        except Exception as e:
            self.state = SessionState.FAILED
            logger.error("Login failed (url=%s): %s", page.url, e)
            page.save_debug(self.debug_dir, f"login_failure_{type(e).__name__}")
            raise

        self.state = SessionState.AUTHENTICATED
        logger.info("Login successful (roll_no=%s)", self.credentials.roll_no)

    def get_page(self) -> PortalPage:
        if self.state is not SessionState.AUTHENTICATED or self._handle is None:
            raise SessionNotReadyError(f"Page not available until login succeeds (state={self.state.value})")
        return self._handle.page

    def close(self) -> Optional[CleanupError]:
        """
        Release the browser. Returns a `CleanupError` (already logged) instead of raising if release fails.
        """
        handle, self._handle = self._handle, None
        self.state = SessionState.CLOSED
        if handle is None:
            return None
        try:
            handle.close()
        except Exception as e:
            logger.warning("Failed to close browser: %s", e, exc_info=True)
            err = CleanupError(f"Failed to close browser: {e}")
            err.__cause__ = e
            return err
        logger.info("Browser closed")
        return None

    def _open_login_page(self, page: PortalPage) -> None:
        t = self.timeouts
        logger.info("Navigating to ERP login page (%s)", self.login_url)
        try:
            page.goto(self.login_url, timeout_ms=t.navigation_ms)
            # The ERP root redirects through SSO before the login form renders.
            page.wait_for_url(self.selectors.login_page_url_pattern, timeout_ms=t.login_redirect_ms)
        except PageInteractionError as e:
            raise NavigationError(f"Could not reach the login page: {e}") from e

    def _submit_credentials(self, page: PortalPage) -> None:
        s = self.selectors
        timeout = self.timeouts.element_ms
        try:
            page.wait_for_visible(s.roll_no_input, timeout_ms=timeout)
            page.fill(s.roll_no_input, self.credentials.roll_no, timeout_ms=timeout)
            page.fill(s.password_input, self.credentials.password, timeout_ms=timeout)
        except PageInteractionError as e:
            raise FormNotFoundError(f"Login form not found: {e}") from e

    def _answer_security_question(self, page: PortalPage) -> None:
        s = self.selectors
        timeout = self.timeouts.element_ms
        try:
            page.wait_for_visible(s.security_question_prompt, timeout_ms=timeout)
            question = (page.text(s.security_question_text) or "").strip()
        except PageInteractionError as e:
            raise FormNotFoundError(f"Security question prompt did not appear: {e}") from e
        if not question:
            raise FormNotFoundError("Security question prompt is visible but its text is empty")

        logger.info("Security question: %s", question)
        answer = self.credentials.answer_for(question)
        if answer is None:
            raise UnknownSecurityQuestionError(question, self.credentials.security_answers.keys())

        try:
            page.fill(s.security_answer_input, answer, timeout_ms=timeout)
        except PageInteractionError as e:
            raise FormNotFoundError(f"Security answer field not found: {e}") from e

    def _request_otp(self, page: PortalPage) -> str:
        # The OTP store only returns codes created strictly after this instant, so take it before the click.
        # Timestamps are second-resolution; back off one second so a same-second code still qualifies.
        requested_at = utc_now_iso(skew_seconds=1)
        logger.info("Requesting OTP")
        try:
            page.click(self.selectors.request_otp_button, timeout_ms=self.timeouts.element_ms)
        except PageInteractionError as e:
            raise FormNotFoundError(f"OTP request button not found: {e}") from e
        return requested_at

    def _submit_otp(self, page: PortalPage, code: str) -> None:
        s = self.selectors
        t = self.timeouts
        try:
            page.fill(s.otp_input, code, timeout_ms=t.element_ms)
            page.click(s.login_submit_button, timeout_ms=t.element_ms)
        except PageInteractionError as e:
            raise FormNotFoundError(f"OTP form not found: {e}") from e

        try:
            page.pause(t.settle_ms)
        except PageInteractionError as e:
            raise NavigationError(f"Page went away after submitting the OTP: {e}") from e
        message = self._login_error_text(page)
        if message:
            raise LoginRejectedError(message)

    def _login_error_text(self, page: PortalPage) -> str:
        try:
            texts = page.texts(self.selectors.login_error_indicators)
        except PageInteractionError:
            # The post-login navigation can still be in flight; look once more after it settles.
            try:
                page.pause(self.timeouts.settle_ms)
                texts = page.texts(self.selectors.login_error_indicators)
            except PageInteractionError as e:
                raise NavigationError(f"Could not inspect the page after submitting the OTP: {e}") from e
        for txt in texts:
            if txt and txt.strip():
                return txt.strip()
        return ""


__all__ = ["PortalSession", "SessionState"]
