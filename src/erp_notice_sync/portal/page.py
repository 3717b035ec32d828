from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Optional, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError


logger = logging.getLogger(__name__)


class PageInteractionError(RuntimeError):
    """A browser-level action failed (element missing, detached, navigation aborted...)."""


class PageTimeoutError(PageInteractionError):
    """A bounded wait elapsed."""


class PortalRow(Protocol):
    """One row of a listing; selectors are relative to the row."""

    def text(self, selector: str) -> Optional[str]: ...

    def attribute(self, selector: str, name: str) -> Optional[str]: ...

    def click(self, selector: str, *, timeout_ms: int) -> None: ...


class PortalPage(Protocol):
    """
    The browser capability the session and the extractor drive.

    Implementations must raise `PageTimeoutError` when a wait elapses and
    `PageInteractionError` for any other browser-level failure.
    """

    @property
    def url(self) -> str: ...

    def goto(self, url: str, *, timeout_ms: int) -> None: ...

    def wait_for_url(self, pattern: str, *, timeout_ms: int) -> None: ...

    def wait_for_visible(self, selector: str, *, timeout_ms: int) -> None: ...

    def wait_for_hidden(self, selector: str, *, timeout_ms: int) -> None: ...

    def fill(self, selector: str, value: str, *, timeout_ms: int) -> None: ...

    def click(self, selector: str, *, timeout_ms: int) -> None: ...

    def press(self, key: str) -> None: ...

    def text(self, selector: str) -> Optional[str]: ...

    def texts(self, selector: str) -> list[str]: ...

    def rows(self, selector: str) -> list[PortalRow]: ...

    def pause(self, ms: int) -> None: ...

    def save_debug(self, debug_dir: str, name_prefix: str) -> None: ...


def _translate(action: str, err: PlaywrightError) -> PageInteractionError:
    msg = f"{action}: {str(err).splitlines()[0] if str(err) else type(err).__name__}"
    if isinstance(err, PlaywrightTimeoutError):
        return PageTimeoutError(msg)
    return PageInteractionError(msg)


# Reading a cell should never wait for the full element timeout; rows are already rendered.
_READ_TIMEOUT_MS = 2_000


class PlaywrightRow:
    def __init__(self, locator: Locator) -> None:
        self._loc = locator

    def text(self, selector: str) -> Optional[str]:
        try:
            cell = self._loc.locator(selector).first
            if cell.count() == 0:
                return None
            return cell.text_content(timeout=_READ_TIMEOUT_MS)
        except PlaywrightError as e:
            raise _translate(f"read {selector}", e) from e

    def attribute(self, selector: str, name: str) -> Optional[str]:
        try:
            cell = self._loc.locator(selector).first
            if cell.count() == 0:
                return None
            return cell.get_attribute(name, timeout=_READ_TIMEOUT_MS)
        except PlaywrightError as e:
            raise _translate(f"read {selector}@{name}", e) from e

    def click(self, selector: str, *, timeout_ms: int) -> None:
        try:
            self._loc.locator(selector).first.click(timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"click {selector}", e) from e


class PlaywrightPage:
    """
    `PortalPage` on top of a Playwright sync `Page`.
    """

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url or ""

    def goto(self, url: str, *, timeout_ms: int) -> None:
        try:
            self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"goto {url}", e) from e

    def wait_for_url(self, pattern: str, *, timeout_ms: int) -> None:
        try:
            self._page.wait_for_url(re.compile(pattern), timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"wait for url /{pattern}/", e) from e

    def wait_for_visible(self, selector: str, *, timeout_ms: int) -> None:
        try:
            self._page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"wait for {selector}", e) from e

    def wait_for_hidden(self, selector: str, *, timeout_ms: int) -> None:
        try:
            self._page.wait_for_selector(selector, state="hidden", timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"wait for {selector} to hide", e) from e

    def fill(self, selector: str, value: str, *, timeout_ms: int) -> None:
        try:
            self._page.fill(selector, value, timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"fill {selector}", e) from e

    def click(self, selector: str, *, timeout_ms: int) -> None:
        try:
            self._page.click(selector, timeout=timeout_ms)
        except PlaywrightError as e:
            raise _translate(f"click {selector}", e) from e

    def press(self, key: str) -> None:
        try:
            self._page.keyboard.press(key)
        except PlaywrightError as e:
            raise _translate(f"press {key}", e) from e

    def text(self, selector: str) -> Optional[str]:
        try:
            loc = self._page.locator(selector).first
            if loc.count() == 0:
                return None
            return loc.text_content(timeout=_READ_TIMEOUT_MS)
        except PlaywrightError as e:
            raise _translate(f"read {selector}", e) from e

    def texts(self, selector: str) -> list[str]:
        try:
            return self._page.locator(selector).all_text_contents()
        except PlaywrightError as e:
            raise _translate(f"read all {selector}", e) from e

    def rows(self, selector: str) -> list[PortalRow]:
        try:
            loc = self._page.locator(selector)
            return [PlaywrightRow(loc.nth(i)) for i in range(loc.count())]
        except PlaywrightError as e:
            raise _translate(f"list {selector}", e) from e

    def pause(self, ms: int) -> None:
        try:
            self._page.wait_for_timeout(ms)
        except PlaywrightError as e:
            raise _translate(f"pause {ms}ms", e) from e

    def save_debug(self, debug_dir: str, name_prefix: str) -> None:
        try:
            out_dir = Path(debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            name_prefix = f"{name_prefix}_{time.strftime('%Y%m%d_%H%M%S')}"
            self._page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(self._page.content(), encoding="utf-8")
            # Rendered text helps when the HTML is mostly script.
            try:
                (out_dir / f"{name_prefix}.txt").write_text(self._page.inner_text("body"), encoding="utf-8")
            except PlaywrightError:
                pass
        except (PlaywrightError, OSError):
            logger.debug("Failed to save debug artifacts.", exc_info=True)
