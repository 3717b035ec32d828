from __future__ import annotations

from typing import Iterable, Optional


class NoticeSyncError(RuntimeError):
    """
    Base class for every failure a sync run can report.

    `step` is filled in by the orchestrator (e.g. "login", "scrape") so callers can tell
    where a run stopped without parsing messages.
    """

    step: Optional[str] = None


class BrowserInitError(NoticeSyncError):
    """The browser automation engine could not be started."""


class NavigationError(NoticeSyncError):
    """The portal login entry point did not load within its timeout."""


class FormNotFoundError(NoticeSyncError):
    """An expected login form control never became available."""


class UnknownSecurityQuestionError(NoticeSyncError):
    def __init__(self, question: str, known_questions: Iterable[str]) -> None:
        self.question = question
        self.known_questions = sorted(known_questions)
        known = ", ".join(repr(q) for q in self.known_questions) or "(none)"
        super().__init__(f"No answer configured for security question {question!r}. Known questions: {known}")


class OtpTimeoutError(NoticeSyncError):
    def __init__(
        self,
        *,
        attempts: int,
        not_found_count: int,
        transport_error_count: int,
        last_error: Optional[BaseException] = None,
    ) -> None:
        self.attempts = attempts
        self.not_found_count = not_found_count
        self.transport_error_count = transport_error_count
        self.last_error = last_error
        msg = (
            f"OTP not available after {attempts} attempts "
            f"(not_found={not_found_count} transport_errors={transport_error_count})"
        )
        if last_error is not None:
            msg += f"; last transport error: {last_error}"
        super().__init__(msg)


class LoginRejectedError(NoticeSyncError):
    def __init__(self, portal_message: str) -> None:
        self.portal_message = portal_message
        super().__init__(f"Portal rejected the login: {portal_message}")


class SessionNotReadyError(NoticeSyncError):
    """The session is not in the state the requested operation needs."""


class ListingUnavailableError(NoticeSyncError):
    """The notice listing did not render within its timeout."""


class DeliveryError(NoticeSyncError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ConfigurationError(NoticeSyncError):
    """Configuration is missing or malformed; raised before any network use."""


class CleanupError(NoticeSyncError):
    """
    Releasing the browser failed. Non-fatal: returned by `PortalSession.close()`, never raised past it.
    """


class UnexpectedRunError(NoticeSyncError):
    """
    A failure outside the taxonomy above, wrapped so it still carries the run `step`. The original is `__cause__`.
    """
