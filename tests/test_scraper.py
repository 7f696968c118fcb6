import asyncio

import httpx
from portal_pages import BROKEN_DETAIL_PAGE, LOGIN_PAGE, detail_page, full_list_page, list_page, list_row

from app.domain.sto.client import PortalClient
from app.domain.sto.scraper import BookingScraper


class ListPortal:
    """Serves `page_sizes[i]` rows on list page i+1"""

    def __init__(self, page_sizes: list, total: int = 385):
        self.page_sizes = page_sizes
        self.total = total
        self.pages_requested = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["cookie"] == "JSESSIONID=abc123"
        if request.url.path.endswith("/view"):
            return httpx.Response(200, text=detail_page())

        page = int(request.url.params["pageIndex"])
        self.pages_requested.append(page)
        size = self.page_sizes[page - 1] if page <= len(self.page_sizes) else 0
        return httpx.Response(200, text=full_list_page((page - 1) * 10 + 1, size, self.total))


def make_scraper(session_store, handler) -> BookingScraper:
    client = PortalClient(base_url="https://portal.test", transport=httpx.MockTransport(handler))
    return BookingScraper(session_store, client, items_per_page=10)


def test_requires_valid_session_without_touching_portal(session_store):
    def handler(request):
        raise AssertionError("portal must not be called without a session")

    scraper = make_scraper(session_store, handler)

    result = asyncio.run(scraper.fetch_all_bookings(3))
    detail = asyncio.run(scraper.fetch_booking_detail("1001"))

    assert result.success is False
    assert result.error_code == "AUTH_REQUIRED"
    assert detail.success is False
    assert detail.error_code == "AUTH_REQUIRED"


def test_expired_session_is_rejected(logged_in_store, clock):
    clock.advance(minutes=31)
    scraper = make_scraper(logged_in_store, ListPortal([10]))

    assert asyncio.run(scraper.fetch_all_bookings(1)).error_code == "AUTH_REQUIRED"


def test_stops_at_short_page(logged_in_store):
    portal = ListPortal([10, 3, 10])
    scraper = make_scraper(logged_in_store, portal)

    result = asyncio.run(scraper.fetch_all_bookings(5))

    assert result.success is True
    assert portal.pages_requested == [1, 2]
    assert len(result.bookings) == 13
    assert result.total_count == 385
    assert result.bookings[0].external_id == "1001"


def test_stops_at_max_pages(logged_in_store):
    portal = ListPortal([10, 10, 10, 10])
    scraper = make_scraper(logged_in_store, portal)

    result = asyncio.run(scraper.fetch_all_bookings(2))

    assert portal.pages_requested == [1, 2]
    assert len(result.bookings) == 20


def test_malformed_row_does_not_end_pagination(logged_in_store):
    rows = [list_row(str(1001 + i), number=i + 1) for i in range(9)]
    rows.append(list_row("1010", number=10).replace("reqstSn=1010", "page=2"))
    pages_requested = []

    def handler(request):
        page = int(request.url.params["pageIndex"])
        pages_requested.append(page)
        if page == 1:
            return httpx.Response(200, text=list_page(rows, total=14))
        return httpx.Response(200, text=full_list_page(11, 4, 14))

    result = asyncio.run(make_scraper(logged_in_store, handler).fetch_all_bookings(5))

    assert pages_requested == [1, 2]
    assert len(result.bookings) == 13
    assert "1010" not in [b.external_id for b in result.bookings]
    assert result.bookings[-1].external_id == "1014"


def test_login_page_means_auth_required(logged_in_store):
    scraper = make_scraper(logged_in_store, lambda request: httpx.Response(200, text=LOGIN_PAGE))

    result = asyncio.run(scraper.fetch_all_bookings(1))

    assert result.success is False
    assert result.error_code == "AUTH_REQUIRED"


def test_server_error_fails_whole_list(logged_in_store):
    def handler(request):
        if request.url.params["pageIndex"] == "2":
            return httpx.Response(500, text="Internal Server Error")
        return httpx.Response(200, text=full_list_page(1, 10, 30))

    result = asyncio.run(make_scraper(logged_in_store, handler).fetch_all_bookings(3))

    assert result.success is False
    assert result.error_code == "NETWORK_ERROR"
    assert result.bookings == []


def test_fetch_booking_detail(logged_in_store):
    result = asyncio.run(make_scraper(logged_in_store, ListPortal([])).fetch_booking_detail("1001"))

    assert result.success is True
    assert result.detail.external_id == "1001"
    assert result.detail.email == "hong@example.com"


def test_detail_layout_mismatch_is_soft_failure(logged_in_store):
    scraper = make_scraper(logged_in_store, lambda request: httpx.Response(200, text=BROKEN_DETAIL_PAGE))

    result = asyncio.run(scraper.fetch_booking_detail("1001"))

    assert result.success is False
    assert result.error_code == "PARSE_ERROR"
    assert result.detail is None
