import asyncio
import json

import httpx
import pytest

from app.email_service import compile_mjml_to_html
from app.email_templates import format_time_slots, new_booking_template, status_change_template
from app.services.kakaowork_service import KakaoWorkError, send_message_by_email


def kakaowork(response: httpx.Response, seen: list):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return response

    return httpx.MockTransport(handler)


def test_kakaowork_send():
    seen = []
    transport = kakaowork(httpx.Response(200, json={"success": True}), seen)

    data = asyncio.run(send_message_by_email("staff@studio.kr", "New booking", bot_key="bot-key", transport=transport))

    assert data == {"success": True}
    assert seen[0].url.path.endswith("/messages.send_by_email")
    assert seen[0].headers["authorization"] == "Bearer bot-key"
    assert json.loads(seen[0].content) == {"email": "staff@studio.kr", "text": "New booking"}


def test_kakaowork_logical_failure_raises():
    transport = kakaowork(
        httpx.Response(200, json={"success": False, "error": {"code": "user_not_found", "message": "user not found"}}),
        [],
    )

    with pytest.raises(KakaoWorkError, match="user not found"):
        asyncio.run(send_message_by_email("ghost@studio.kr", "hi", bot_key="bot-key", transport=transport))


def test_kakaowork_without_bot_key():
    with pytest.raises(KakaoWorkError):
        asyncio.run(send_message_by_email("staff@studio.kr", "hi", bot_key=None))


def test_format_time_slots():
    assert format_time_slots([9, 10, 11]) == "09:00 - 12:00"
    assert format_time_slots([]) == "-"


def test_templates_escape_portal_text():
    mjml = new_booking_template(
        applicant_name="<b>홍길동</b>",
        facility_name="대형 스튜디오",
        rental_date="2026-03-15",
        time_slots=[13, 14],
        status_label="received",
        organization="종로구청",
    )

    assert "&lt;b&gt;홍길동&lt;/b&gt;" in mjml
    assert "<b>홍길동</b>" not in mjml
    assert "13:00 - 15:00" in mjml
    assert "종로구청" in mjml


def test_status_change_template_shows_transition():
    mjml = status_change_template(
        applicant_name="김철수",
        facility_name="1인 스튜디오 #1",
        rental_date="2026-03-16",
        time_slots=[14],
        previous_label="awaiting payment",
        new_label="approved",
    )

    assert "awaiting payment &#8594; approved" in mjml
    assert "14:00 - 15:00" in mjml


def test_templates_compile_to_html():
    mjml = status_change_template(
        applicant_name="김철수",
        facility_name="1인 스튜디오 #1",
        rental_date="2026-03-16",
        time_slots=[14],
        previous_label="awaiting payment",
        new_label="approved",
        dashboard_url="https://studio.example/bookings",
    )

    html = compile_mjml_to_html(mjml)

    assert "<mj-" not in html
    assert "김철수" in html
    assert "https://studio.example/bookings" in html
