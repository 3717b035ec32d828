from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from ..config import PortalTimeouts
from ..errors import ListingUnavailableError
from ..models import Notice
from ..util.dates import parse_portal_timestamp
from .page import PageInteractionError, PortalPage, PortalRow
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Optional[str]) -> int:
    """
    Leading-integer parse of a grid cell ("42", " 42 ", "42 (new)"). 0 means missing/invalid.
    """
    m = _LEADING_INT_RE.match(value or "")
    return int(m.group(1)) if m else 0


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class NoticeExtractor:
    """
    Walk the notice board newest-first and return every notice strictly newer than the watermark.

    The board is sorted by notice time, descending, so the scan stops at the first row that is not
    newer than the watermark. Rows are read one at a time because the detail dialog is shared page state.
    """

    def __init__(
        self,
        page: PortalPage,
        *,
        listing_url: str,
        watermark: datetime,
        selectors: Optional[PortalSelectors] = None,
        timeouts: Optional[PortalTimeouts] = None,
        debug_dir: str = "data/debug",
    ) -> None:
        self.page = page
        self.listing_url = listing_url
        self.watermark = watermark
        self.selectors = selectors or PortalSelectors()
        self.timeouts = timeouts or PortalTimeouts()
        self.debug_dir = debug_dir

    def scrape(self) -> list[Notice]:
        rows = self._open_listing()
        logger.info("Notice board has %d rows; watermark=%s", len(rows), self.watermark.strftime("%d-%m-%Y %H:%M"))

        notices: list[Notice] = []
        seen_ids: set[int] = set()
        for idx, row in enumerate(rows):
            try:
                raw_at = _clean(row.text(self.selectors.cell_notice_at))
            except PageInteractionError as e:
                logger.warning("Row %d: could not read notice time (%s); skipping.", idx + 1, e)
                continue
            if not raw_at:
                logger.warning("Row %d: empty notice time; skipping.", idx + 1)
                continue
            try:
                notice_at = parse_portal_timestamp(raw_at)
            except ValueError:
                logger.warning("Row %d: unparseable notice time %r; skipping.", idx + 1, raw_at)
                continue

            if notice_at <= self.watermark:
                logger.info("Row %d is at/before the watermark (%s); stopping scan.", idx + 1, raw_at)
                break

            notice = self._extract_row(idx, row, raw_at)
            if notice is None:
                continue
            if notice.id in seen_ids:
                logger.warning("Row %d: notice id=%d already extracted in this run; skipping.", idx + 1, notice.id)
                continue
            seen_ids.add(notice.id)
            notices.append(notice)
            logger.info("[%d/%d] Scraped notice id=%d (%s)", idx + 1, len(rows), notice.id, raw_at)

        logger.info("Extracted %d new notices", len(notices))
        return notices

    def _open_listing(self) -> list[PortalRow]:
        s = self.selectors
        try:
            self.page.goto(self.listing_url, timeout_ms=self.timeouts.navigation_ms)
            self.page.wait_for_visible(s.listing_container, timeout_ms=self.timeouts.listing_ms)
        except PageInteractionError as e:
            self.page.save_debug(self.debug_dir, "listing_unavailable")
            raise ListingUnavailableError(f"Notice listing did not load: {e}") from e
        return self.page.rows(s.listing_rows)

    def _extract_row(self, idx: int, row: PortalRow, notice_at: str) -> Optional[Notice]:
        s = self.selectors
        row_num = parse_int(row.text(s.cell_row_num))
        notice_id = parse_int(row.text(s.cell_id))
        if row_num == 0 or notice_id == 0:
            # jqGrid renders placeholder rows with blank cells.
            logger.warning("Row %d: invalid id/row number (id=%d rowNum=%d); skipping.", idx + 1, notice_id, row_num)
            return None

        return Notice(
            row_num=row_num,
            id=notice_id,
            type=_clean(row.text(s.cell_type)),
            category=_clean(row.text(s.cell_category)),
            company=_clean(row.text(s.cell_company)),
            notice_at=notice_at,
            noticed_by=parse_int(row.text(s.cell_noticed_by)),
            notice_text=self._notice_body(notice_id, row),
        )

    def _notice_body(self, notice_id: int, row: PortalRow) -> str:
        try:
            text = self._read_detail_view(row)
            if text:
                return text
            logger.warning("Notice id=%d: detail view was empty; using listing summary.", notice_id)
        except PageInteractionError as e:
            logger.warning("Notice id=%d: detail view failed (%s); using listing summary.", notice_id, e)
            self._dismiss_detail_view()
        return _clean(row.attribute(self.selectors.cell_notice_link, self.selectors.notice_summary_attribute))

    def _read_detail_view(self, row: PortalRow) -> str:
        s = self.selectors
        timeout = self.timeouts.detail_ms
        row.click(s.cell_notice_link, timeout_ms=timeout)
        self.page.wait_for_visible(s.detail_content, timeout_ms=timeout)
        text = _clean(self.page.text(s.detail_content))
        try:
            self.page.click(s.detail_close_button, timeout_ms=timeout)
            self.page.wait_for_hidden(s.detail_content, timeout_ms=timeout)
        except PageInteractionError:
            logger.debug("Notice dialog did not close cleanly.", exc_info=True)
            self._dismiss_detail_view()
        return text

    def _dismiss_detail_view(self) -> None:
        # Best-effort: a dialog left open would intercept clicks on the next row.
        try:
            self.page.click(self.selectors.detail_close_button, timeout_ms=1_000)
            return
        except PageInteractionError:
            pass
        try:
            self.page.press("Escape")
        except PageInteractionError:
            logger.debug("Could not dismiss the notice dialog.", exc_info=True)
