"""
STO portal HTML parser
BeautifulSoup extraction against the portal's fixed page structure.
Kept free of networking so it can be exercised with saved pages.
"""

import logging
import re
from typing import NamedTuple, Optional

from bs4 import BeautifulSoup, Tag

from .errors import PARSE_ERROR, DetailParseError, StoError
from .schemas import BookingDetail, BookingRecord, SubmittedFile
from .status import APPLIED, CANCELLED, CONFIRMED, PORTAL_STATUS_MAP, time_ranges_to_slots

logger = logging.getLogger(__name__)

LOGIN_SUCCESS = "SUCCESS"
LOGIN_NEEDS_VERIFICATION = "NEEDS_VERIFICATION"
LOGIN_FAILED = "FAILED"

LIST_COLUMNS = 12

_WS_RE = re.compile(r"\s+")
_REQST_SN_RE = re.compile(r"reqstSn=(\d+)")
_NUMBER_RE = re.compile(r"(\d+)")
_CERT_TEXT_RE = re.compile(r"인증번호를\s*입력")


class ListPage(NamedTuple):
    total_count: int
    row_count: int  # <tr> rows on the page, parsed or not
    bookings: list[BookingRecord]


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", text.replace("\xa0", " ")).strip()


def extract_text(node: Optional[Tag]) -> str:
    """Visible text of a node with whitespace collapsed"""
    if node is None:
        return ""
    return _clean(node.get_text(" "))


def _first_int(text: str, default: int = 0) -> int:
    match = _NUMBER_RE.search(text.replace(",", ""))
    return int(match.group(1)) if match else default


def _has_class(node: Tag, class_name: str) -> bool:
    return class_name in (node.get("class") or []) or node.select_one(f".{class_name}") is not None


# ============================================================================
# LOGIN PAGES
# ============================================================================


def _has_login_form(soup: BeautifulSoup) -> bool:
    if soup.find("input", attrs={"name": "userPw"}) is not None:
        return True
    return soup.find("form", action=lambda action: action and "loginAction" in action) is not None


def _has_logout(soup: BeautifulSoup) -> bool:
    if soup.find("a", href=lambda href: href and "logout" in href.lower()) is not None:
        return True
    return "로그아웃" in soup.get_text()


def _is_login_soup(soup: BeautifulSoup) -> bool:
    return _has_login_form(soup) and not _has_logout(soup)


def is_login_page(html: str) -> bool:
    """True when the portal bounced us back to its login form (session gone)"""
    return _is_login_soup(_soup(html))


def classify_login_response(html: str) -> str:
    """
    Classify the page returned after submitting credentials or a code.
    A verification form wins over everything, then a re-rendered login form
    means rejection, and a page offering logout means we are in.
    """
    soup = _soup(html)
    if soup.find("input", attrs={"name": "certNo"}) is not None or _CERT_TEXT_RE.search(soup.get_text()):
        return LOGIN_NEEDS_VERIFICATION
    if _is_login_soup(soup):
        return LOGIN_FAILED
    if _has_logout(soup):
        return LOGIN_SUCCESS
    return LOGIN_FAILED


# ============================================================================
# RESERVATION LIST
# ============================================================================


def _total_count(soup: BeautifulSoup) -> int:
    # <div class="search-result-num">총 <strong>385</strong>건</div>
    strong = soup.select_one(".search-result-num strong")
    return _first_int(extract_text(strong)) if strong else 0


def parse_total_count(html: str) -> int:
    return _total_count(_soup(html))


def _parse_list_status(cell: Tag) -> str:
    status_text = extract_text(cell)
    if status_text in PORTAL_STATUS_MAP:
        return PORTAL_STATUS_MAP[status_text]
    if _has_class(cell, "txt-green"):
        return CONFIRMED
    if _has_class(cell, "txt-real-read"):
        return CANCELLED
    return APPLIED


def _parse_list_row(row: Tag) -> Optional[BookingRecord]:
    cells = row.find_all("td")
    if len(cells) < LIST_COLUMNS:
        return None

    link = cells[5].find("a", href=True)
    link_match = _REQST_SN_RE.search(link["href"]) if link else None
    if not link_match:
        return None

    # One range per line: 09:00~10:00<br>10:00~11:00
    time_ranges = [_clean(t) for t in cells[4].get_text("\n").split("\n")]
    time_ranges = [t for t in time_ranges if "~" in t]

    try:
        return BookingRecord(
            external_id=link_match.group(1),
            row_number=_first_int(extract_text(cells[0])),
            facility_name=extract_text(cells[1]),
            participants_count=_first_int(extract_text(cells[2])),
            rental_date=extract_text(cells[3]).replace(".", "-"),
            time_ranges=time_ranges,
            time_slots=time_ranges_to_slots(time_ranges),
            applicant_name=extract_text(cells[5]),
            organization=extract_text(cells[6]),
            phone=extract_text(cells[7]),
            status=_parse_list_status(cells[8]),
            cancel_date=extract_text(cells[9]) or None,
            special_note=extract_text(cells[10]),
            created_at=extract_text(cells[11]).replace(".", "-"),
        )
    except ValueError as e:
        logger.warning(f"⚠️ Skipping malformed reservation row {link_match.group(1)}: {e}")
        return None


def parse_list_page(html: str) -> ListPage:
    """Parse one reservation list page; rows that do not match the layout are skipped"""
    soup = _soup(html)
    tbody = soup.select_one("tbody.dataTbody")
    if tbody is None:
        raise StoError(PARSE_ERROR, "Reservation table (tbody.dataTbody) not found")

    rows = tbody.find_all("tr")
    bookings = []
    for row in rows:
        booking = _parse_list_row(row)
        if booking is not None:
            bookings.append(booking)

    return ListPage(total_count=_total_count(soup), row_count=len(rows), bookings=bookings)


def parse_booking_list(html: str) -> list[BookingRecord]:
    return parse_list_page(html).bookings


# ============================================================================
# RESERVATION DETAIL
# ============================================================================


def _value_of(cont: Tag) -> str:
    """A selected <option> or an <input value> wins over the plain text"""
    selected = cont.select_one("option[selected]")
    if selected is not None:
        return extract_text(selected)
    field = cont.find("input", attrs={"value": True})
    if field is not None:
        return _clean(field["value"])
    return extract_text(cont)


def _field_value(soup: BeautifulSoup, label: str) -> str:
    """
    Value of a labelled field:
    <div class="form-list-name">label</div><div class="form-list-cont">value</div>
    """
    for name in soup.select(".form-list-name"):
        if label not in name.get_text():
            continue
        cont = name.find_next_sibling(class_="form-list-cont")
        if cont is not None:
            return _value_of(cont)
    return ""


def _next_li_value(soup: BeautifulSoup, label: str) -> str:
    """Questionnaire answers live in the <li> following the question's <li>"""
    question = soup.find(string=lambda s: s and label in s)
    item = question.find_parent("li") if question is not None else None
    answer = item.find_next_sibling("li") if item is not None else None
    return extract_text(answer.select_one(".form-list-cont")) if answer is not None else ""


def _selected_in(soup: BeautifulSoup, select_id: str) -> str:
    select = soup.find("select", id=select_id) or soup.find("select", attrs={"name": select_id})
    if select is None:
        return ""
    return extract_text(select.select_one("option[selected]"))


def _input_value(soup: BeautifulSoup, input_id: str) -> str:
    field = soup.find("input", id=input_id)
    return _clean(field.get("value", "")) if field is not None else ""


def _submitted_files(soup: BeautifulSoup) -> list[SubmittedFile]:
    files = []
    for link in soup.select("a.file-down"):
        name = extract_text(link)
        if name:
            files.append(SubmittedFile(name=name, url=link.get("href")))
    return files


def parse_booking_detail(
    html: str, external_id: str, list_item: Optional[BookingRecord] = None
) -> BookingDetail:
    """
    Parse a reservation detail page.
    Raises DetailParseError when the form regions are missing, or when there is
    no list row to fall back on and the core fields cannot be read.
    """
    soup = _soup(html)
    if soup.select_one(".form-list-name") is None:
        raise DetailParseError(f"Detail form not found for reservation {external_id}")

    fields = {}
    if list_item is not None:
        fields.update(list_item.model_dump())

    facility_name = _field_value(soup, "신청 시설")
    if facility_name:
        fields["facility_name"] = facility_name

    rental_date = _field_value(soup, "예약일")
    if rental_date:
        fields["rental_date"] = rental_date.replace(".", "-")

    time_text = _field_value(soup, "예약 시간")
    if time_text:
        time_ranges = [t for t in re.split(r"[,\s]+", time_text) if "~" in t]
        if time_ranges:
            fields["time_ranges"] = time_ranges
            fields["time_slots"] = time_ranges_to_slots(time_ranges)

    full_name = _field_value(soup, "신청자명")
    fields.setdefault("applicant_name", full_name)

    participants = _field_value(soup, "행사 규모")
    if participants:
        fields["participants_count"] = _first_int(participants)

    fields["organization"] = _field_value(soup, "소속") or fields.get("organization", "")
    fields["special_note"] = _field_value(soup, "특이사항") or fields.get("special_note", "")

    status_text = _selected_in(soup, "reqstSttusCd")
    if status_text in PORTAL_STATUS_MAP:
        fields["status"] = PORTAL_STATUS_MAP[status_text]

    missing = [k for k in ("facility_name", "rental_date", "applicant_name", "status") if not fields.get(k)]
    if missing:
        raise DetailParseError(
            f"Detail page for reservation {external_id} is missing {', '.join(missing)}"
        )

    discount_text = _field_value(soup, "대관료 할인률") or _field_value(soup, "대관료 할인율")
    if not discount_text:
        discount_text = extract_text(soup.find(id="dscntRt"))

    # "대관료" alone would also match the discount label, so read the input directly
    rental_fee = _input_value(soup, "rentalFee").replace(",", "")
    no_show = soup.find(id="noshowAt2")

    files = _submitted_files(soup)
    license_file = next((f.name for f in files if f.name.lower().endswith(".pdf")), "")

    fields.update(
        external_id=external_id,
        application_date=_field_value(soup, "신청일"),
        full_name=full_name,
        full_phone=_field_value(soup, "휴대폰"),
        email=_field_value(soup, "이메일"),
        company_phone=_field_value(soup, "전화번호"),
        purpose=_field_value(soup, "사용 목적"),
        user_type=_selected_in(soup, "userReqstTySn"),
        discount_rate=_first_int(discount_text),
        rental_fee=int(rental_fee) if rental_fee.isdigit() else None,
        bank_account=_field_value(soup, "시설 대관료 입금 계좌"),
        submitted_files=files,
        business_license=license_file,
        receipt_type=_field_value(soup, "증빙 발행 유형 선택"),
        business_number=_field_value(soup, "사업자번호"),
        has_no_show=no_show is not None and no_show.has_attr("checked"),
        no_show_memo=_input_value(soup, "noshowMemo"),
        studio_usage_method=_next_li_value(soup, "어떤 방식으로 스튜디오를 사용하실 예정이신가요"),
        file_delivery_method=_next_li_value(soup, "파일 원본은 어떻게 받길 원하십니까"),
        pre_meeting_contact=_next_li_value(soup, "스튜디오 사전 미팅을 원하시면 아래 연락처를 남겨주세요"),
        other_inquiry=_next_li_value(soup, "기타 스튜디오에 문의할 점을 기재해 주세요"),
    )

    try:
        return BookingDetail(**fields)
    except ValueError as e:
        raise DetailParseError(f"Detail page for reservation {external_id} did not validate: {e}") from e
