from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from playwright.sync_api import Browser, BrowserContext, Error as PlaywrightError, Playwright, sync_playwright

from .page import PlaywrightPage, PortalPage


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class BrowserHandle(Protocol):
    page: PortalPage

    def close(self) -> None: ...


# A launcher starts a browser and hands back exclusive ownership of it.
BrowserLauncher = Callable[[], BrowserHandle]


class PlaywrightBrowserHandle:
    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext, page: PortalPage) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self.page = page

    def close(self) -> None:
        """
        Close context, browser and driver. Every step is attempted; the first failure is re-raised at the end.
        """
        first_error: Optional[BaseException] = None
        for name, fn in (
            ("context", self._context.close),
            ("browser", self._browser.close),
            ("playwright", self._playwright.stop),
        ):
            try:
                fn()
            except Exception as e:
                logger.debug("Failed to close %s.", name, exc_info=True)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error


def _launch_chromium(p: Playwright, *, headless: bool, slow_mo_ms: int, timeout_ms: int) -> Browser:
    # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
    # image doesn't have Playwright browsers available.
    try:
        return p.chromium.launch(headless=headless, slow_mo=slow_mo_ms, timeout=timeout_ms)
    except PlaywrightError as e:
        msg = str(e)
        if "Executable doesn't exist" not in msg:
            raise
        logger.warning("Playwright Chromium executable missing; falling back to system browser channel. (%s)", msg)

    try:
        return p.chromium.launch(headless=headless, slow_mo=slow_mo_ms, timeout=timeout_ms, channel="chrome")
    except PlaywrightError:
        return p.chromium.launch(headless=headless, slow_mo=slow_mo_ms, timeout=timeout_ms, channel="msedge")


def launch_chromium(
    *,
    headless: bool = True,
    slow_mo_ms: int = 0,
    launch_timeout_ms: int = 30_000,
    user_agent: str = DEFAULT_USER_AGENT,
) -> PlaywrightBrowserHandle:
    p = sync_playwright().start()
    browser: Optional[Browser] = None
    try:
        browser = _launch_chromium(p, headless=headless, slow_mo_ms=int(slow_mo_ms or 0), timeout_ms=launch_timeout_ms)
        context = browser.new_context(
            viewport={"width": 1280, "height": 720},
            user_agent=user_agent,
            color_scheme="light",
        )
        page = context.new_page()
    except Exception:
        if browser is not None:
            try:
                browser.close()
            except Exception:
                logger.debug("Failed to close half-started browser.", exc_info=True)
        p.stop()
        raise

    logger.info("Browser initialized (headless=%s)", headless)
    return PlaywrightBrowserHandle(p, browser, context, PlaywrightPage(page))
