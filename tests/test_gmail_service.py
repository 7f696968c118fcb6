import asyncio
from datetime import datetime, timedelta, timezone

import httpx
from portal_pages import gmail_body

from app.domain.sto.schemas import CodeResult
from app.services.gmail_service import (
    GmailVerificationCodeRetriever,
    extract_message_body,
    extract_verification_code,
)

NOW = datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)


class FakeTimer:
    """monotonic() and sleep() sharing one virtual clock"""

    def __init__(self):
        self.elapsed = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.elapsed

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds


def make_retriever(handler=None, timer=None) -> GmailVerificationCodeRetriever:
    timer = timer or FakeTimer()
    return GmailVerificationCodeRetriever(
        client_id="client-id",
        client_secret="client-secret",
        refresh_token="refresh-token",
        transport=httpx.MockTransport(handler) if handler else None,
        sleep=timer.sleep,
        monotonic=timer.monotonic,
        now=lambda: NOW,
    )


def gmail_handler(messages: dict):
    """messages: id -> (received_at, plain text body)"""
    calls = {"token": 0, "list": 0, "get": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            calls["token"] += 1
            return httpx.Response(200, json={"access_token": "access", "expires_in": 3600})

        assert request.headers["Authorization"] == "Bearer access"
        if request.url.path.endswith("/messages"):
            calls["list"] += 1
            return httpx.Response(200, json={"messages": [{"id": m} for m in messages]})

        calls["get"] += 1
        message_id = request.url.path.rsplit("/", 1)[-1]
        received_at, text = messages[message_id]
        return httpx.Response(
            200,
            json={
                "id": message_id,
                "internalDate": str(int(received_at.timestamp() * 1000)),
                "payload": {
                    "mimeType": "multipart/mixed",
                    "parts": [
                        {"mimeType": "application/pdf", "filename": "guide.pdf", "body": {"attachmentId": "a1"}},
                        {"mimeType": "text/html", "filename": "", "body": {"data": gmail_body(text)}},
                    ],
                },
            },
        )

    handler.calls = calls
    return handler


def test_code_after_keyword():
    assert extract_verification_code("STO 관리자 로그인 인증코드: 822436 입니다.") == "822436"


def test_no_keyword_means_no_code():
    assert extract_verification_code("Your order 123456 has shipped.") is None


def test_qualified_code_beats_earlier_bare_number():
    body = "<p>봄맞이 이벤트 당첨번호 111111</p><p>인증번호: <b>822436</b></p>"
    assert extract_verification_code(body) == "822436"


def test_entities_between_keyword_and_code_are_decoded():
    body = "<p>이벤트 상품번호 777777</p><p>인증코드:&#160;822436</p>"
    assert extract_verification_code(body) == "822436"


def test_code_far_after_keyword_beats_earlier_number():
    body = (
        "특가 상품번호 777777 안내. STO 인증 메일입니다. 아래 번호를 로그인 화면의 입력란에 "
        "정확하게 입력하여 주시기 바랍니다: 822436"
    )
    assert extract_verification_code(body) == "822436"


def test_markup_is_stripped_before_matching():
    body = "<div><span>인증</span> <span>번호</span></div><table><tr><td>654321</td></tr></table>"
    assert extract_verification_code(body) == "654321"


def test_longer_digit_runs_are_not_codes():
    assert extract_verification_code("인증 요청 번호 20260310123 입니다") is None


def test_body_prefers_text_parts_over_attachments():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {"mimeType": "image/png", "filename": "logo.png", "body": {"attachmentId": "x"}},
            {
                "mimeType": "multipart/alternative",
                "parts": [{"mimeType": "text/plain", "filename": "", "body": {"data": gmail_body("인증코드 123456")}}],
            },
        ],
    }
    assert extract_message_body(payload) == "인증코드 123456"


def test_fetch_code_reads_newest_message():
    handler = gmail_handler({"m1": (NOW - timedelta(minutes=1), "<p>STO 인증코드: 822436</p>")})
    retriever = make_retriever(handler)

    result = asyncio.run(retriever.fetch_code())

    assert result.found is True
    assert result.code == "822436"
    assert result.source_timestamp == NOW - timedelta(minutes=1)
    assert handler.calls["token"] == 1


def test_fetch_code_ignores_mail_older_than_challenge():
    handler = gmail_handler({"m1": (NOW - timedelta(minutes=2), "인증코드: 111111")})
    retriever = make_retriever(handler)

    result = asyncio.run(retriever.fetch_code(newer_than=NOW - timedelta(minutes=1)))

    assert result.found is False


def test_fetch_code_ignores_mail_outside_window():
    handler = gmail_handler({"m1": (NOW - timedelta(minutes=15), "인증코드: 111111")})

    result = asyncio.run(make_retriever(handler).fetch_code())

    assert result.found is False


def test_fetch_code_reuses_access_token():
    handler = gmail_handler({"m1": (NOW, "인증코드: 822436")})
    retriever = make_retriever(handler)

    asyncio.run(retriever.fetch_code())
    asyncio.run(retriever.fetch_code())

    assert handler.calls["token"] == 1
    assert handler.calls["list"] == 2


def test_fetch_code_reports_api_errors():
    def handler(request):
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(400, json={"error": "invalid_grant"})
        raise AssertionError("mailbox must not be queried without a token")

    result = asyncio.run(make_retriever(handler).fetch_code())

    assert result.found is False
    assert result.error


def test_fetch_code_unconfigured():
    retriever = GmailVerificationCodeRetriever(client_id=None, client_secret=None, refresh_token=None)

    result = asyncio.run(retriever.fetch_code())

    assert result.found is False
    assert "not configured" in result.error


def test_wait_for_code_succeeds_on_third_poll_at_nine_seconds():
    timer = FakeTimer()
    retriever = make_retriever(timer=timer)
    polls = []

    async def fetch_code(newer_than=None):
        polls.append(timer.elapsed)
        if len(polls) < 3:
            return CodeResult(found=False, error="not yet")
        return CodeResult(found=True, code="822436")

    retriever.fetch_code = fetch_code

    result = asyncio.run(retriever.wait_for_code(timeout=9.0, poll_interval=3.0))

    assert result.found is True
    assert result.code == "822436"
    assert polls == [3.0, 6.0, 9.0]
    assert timer.elapsed == 9.0


def test_wait_for_code_times_out():
    timer = FakeTimer()
    retriever = make_retriever(timer=timer)
    polls = []

    async def fetch_code(newer_than=None):
        polls.append(timer.elapsed)
        return CodeResult(found=False, error="not yet")

    retriever.fetch_code = fetch_code

    result = asyncio.run(retriever.wait_for_code(timeout=10.0, poll_interval=3.0))

    assert result.found is False
    assert result.error == "TIMEOUT"
    assert polls == [3.0, 6.0, 9.0, 10.0]
    assert timer.elapsed == 10.0


def test_wait_for_code_can_be_cancelled():
    retriever = make_retriever(gmail_handler({}))
    # Real sleep so the task actually suspends
    retriever._sleep = asyncio.sleep

    async def run():
        task = asyncio.create_task(retriever.wait_for_code(timeout=60.0, poll_interval=30.0))
        await asyncio.sleep(0.01)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return True
        return False

    assert asyncio.run(run()) is True
