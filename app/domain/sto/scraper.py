"""
STO booking scraper
Fetches the reservation list and detail pages with the active portal session.
"""

import logging
from typing import Optional

from ...config import STO_DETAIL_PATH, STO_ITEMS_PER_PAGE, STO_LIST_PATH
from .client import PortalClient
from .errors import AUTH_REQUIRED, PARSE_ERROR, StoError
from .parser import ListPage, parse_booking_detail, parse_list_page
from .schemas import BookingDetailResult, BookingListResult, BookingRecord
from .session_store import SessionStore

logger = logging.getLogger(__name__)

LOGIN_REQUIRED_MESSAGE = "STO login required."


class BookingScraper:
    def __init__(
        self,
        session_store: SessionStore,
        client: PortalClient,
        items_per_page: int = STO_ITEMS_PER_PAGE,
    ):
        self.session_store = session_store
        self.client = client
        self.items_per_page = items_per_page

    def _cookie_header(self) -> str:
        if not self.session_store.is_session_valid():
            raise StoError(AUTH_REQUIRED, LOGIN_REQUIRED_MESSAGE)
        return self.session_store.get_current_session().cookies

    async def _get(self, path: str, params: dict) -> str:
        return await self.client.get_page(path, self._cookie_header(), params=params)

    async def fetch_list_page(self, page: int = 1) -> ListPage:
        html = await self._get(STO_LIST_PATH, {"pageIndex": page})
        return parse_list_page(html)

    async def fetch_all_bookings(self, max_pages: int = 1) -> BookingListResult:
        """
        Walk list pages in order until a short page or max_pages.
        Any page failure fails the whole list; a partial list is never returned.
        """
        if not self.session_store.is_session_valid():
            return BookingListResult(success=False, error=LOGIN_REQUIRED_MESSAGE, error_code=AUTH_REQUIRED)

        total_count = 0
        bookings: list[BookingRecord] = []
        try:
            for page in range(1, max(max_pages, 1) + 1):
                list_page = await self.fetch_list_page(page)
                if page == 1:
                    total_count = list_page.total_count
                bookings.extend(list_page.bookings)
                logger.info(
                    f"📄 STO list page {page}: {len(list_page.bookings)} bookings "
                    f"from {list_page.row_count} rows"
                )

                # A skipped malformed row still counts towards a full page
                if list_page.row_count < self.items_per_page:
                    break
        except StoError as e:
            logger.error(f"❌ STO booking list fetch failed: {e.message}")
            return BookingListResult(success=False, error=e.message, error_code=e.code)

        return BookingListResult(
            success=True,
            total_count=total_count or len(bookings),
            bookings=bookings,
        )

    async def fetch_booking_detail(
        self, external_id: str, list_item: Optional[BookingRecord] = None
    ) -> BookingDetailResult:
        """Fetch one detail page; a layout mismatch comes back as a PARSE_ERROR result"""
        if not self.session_store.is_session_valid():
            return BookingDetailResult(success=False, error=LOGIN_REQUIRED_MESSAGE, error_code=AUTH_REQUIRED)

        try:
            html = await self._get(STO_DETAIL_PATH, {"reqstSn": external_id})
            detail = parse_booking_detail(html, external_id, list_item)
        except StoError as e:
            level = logging.WARNING if e.code == PARSE_ERROR else logging.ERROR
            logger.log(level, f"⚠️ STO detail {external_id} failed: {e.message}")
            return BookingDetailResult(success=False, error=e.message, error_code=e.code)

        return BookingDetailResult(success=True, detail=detail)
