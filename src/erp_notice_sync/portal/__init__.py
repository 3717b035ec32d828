from .notices import NoticeExtractor
from .otp import OtpRendezvousClient, fetch_otp
from .page import PageInteractionError, PageTimeoutError, PortalPage, PortalRow
from .selectors import PortalSelectors
from .session import PortalSession, SessionState

__all__ = [
    "NoticeExtractor",
    "OtpRendezvousClient",
    "fetch_otp",
    "PageInteractionError",
    "PageTimeoutError",
    "PortalPage",
    "PortalRow",
    "PortalSelectors",
    "PortalSession",
    "SessionState",
]
