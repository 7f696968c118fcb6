"""
Gmail Verification Code Service
Polls the staff mailbox for the STO portal's one-time login code
"""

import asyncio
import base64
import html
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import httpx

from ..config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REFRESH_TOKEN,
    VERIFICATION_POLL_INTERVAL_SECONDS,
    VERIFICATION_QUERY,
    VERIFICATION_TIMEOUT_SECONDS,
)
from ..domain.sto.errors import TIMEOUT
from ..domain.sto.schemas import CodeResult

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"

# Messages older than this are never trusted, whatever the search query says
MAX_MESSAGE_AGE = timedelta(minutes=10)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_KEYWORD_RE = re.compile(r"인증|코드|verification", re.I)
# The first six-digit run after the keyword wins over any other six-digit run in the mail
_QUALIFIED_CODE_RES = [
    re.compile(r"인증[^\d]*(\d{6})(?!\d)"),
    re.compile(r"코드[^\d]*(\d{6})(?!\d)"),
]
_BARE_CODE_RE = re.compile(r"(?<!\d)(\d{6})(?!\d)")


def strip_html(body: str) -> str:
    """Drop tags, then decode entities so `&#160;` cannot put digits next to the code"""
    text = html.unescape(_TAG_RE.sub(" ", body)).replace("\xa0", " ")
    return _WS_RE.sub(" ", text).strip()


def extract_verification_code(body: str) -> Optional[str]:
    """
    Pull the six-digit code out of a (possibly HTML) mail body.
    Without any verification keyword in the text nothing is returned.
    """
    text = strip_html(body)
    for pattern in _QUALIFIED_CODE_RES:
        match = pattern.search(text)
        if match:
            return match.group(1)

    if not _KEYWORD_RE.search(text):
        return None

    match = _BARE_CODE_RE.search(text)
    return match.group(1) if match else None


def _decode_part(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_message_body(payload: Optional[dict]) -> str:
    """Text of a Gmail message payload; text/plain and text/html parts beat attachments"""
    if not payload:
        return ""

    mime_type = payload.get("mimeType", "")
    data = (payload.get("body") or {}).get("data")
    if data and not payload.get("filename") and (mime_type.startswith("text/") or not mime_type):
        return _decode_part(data)

    parts = payload.get("parts") or []
    for part in parts:
        if part.get("filename"):
            continue
        if part.get("mimeType") in ("text/plain", "text/html") and (part.get("body") or {}).get("data"):
            return _decode_part(part["body"]["data"])

    for part in parts:
        if part.get("parts"):
            nested = extract_message_body(part)
            if nested:
                return nested

    return ""


class GmailVerificationCodeRetriever:
    """Finds the portal's verification code in a Gmail inbox via the REST API"""

    def __init__(
        self,
        client_id: Optional[str] = GOOGLE_CLIENT_ID,
        client_secret: Optional[str] = GOOGLE_CLIENT_SECRET,
        refresh_token: Optional[str] = GOOGLE_REFRESH_TOKEN,
        query: str = VERIFICATION_QUERY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.query = query
        self.transport = transport
        self._sleep = sleep
        self._monotonic = monotonic
        self._now = now
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        """Exchange the refresh token, reusing the access token until shortly before expiry"""
        if (
            self._access_token
            and self._token_expires_at
            and self._token_expires_at > self._now() + timedelta(minutes=1)
        ):
            return self._access_token

        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Gmail token refresh failed: HTTP {response.status_code}")
            raise httpx.HTTPStatusError(
                "Token refresh failed", request=response.request, response=response
            )

        tokens = response.json()
        self._access_token = tokens["access_token"]
        self._token_expires_at = self._now() + timedelta(seconds=tokens.get("expires_in", 3600))
        return self._access_token

    async def fetch_code(self, newer_than: Optional[datetime] = None) -> CodeResult:
        """
        One-shot search: newest matching message first, first extractable code wins.
        `newer_than` rejects mails received before a given moment (e.g. the login challenge).
        """
        if not self.is_configured:
            return CodeResult(
                found=False,
                error="Gmail is not configured (GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN)",
            )

        oldest_allowed = self._now() - MAX_MESSAGE_AGE
        if newer_than and newer_than > oldest_allowed:
            oldest_allowed = newer_than

        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self.transport) as client:
                access_token = await self._get_access_token(client)
                headers = {"Authorization": f"Bearer {access_token}"}

                list_response = await client.get(
                    f"{GMAIL_API}/messages",
                    params={"q": self.query, "maxResults": 5},
                    headers=headers,
                )
                list_response.raise_for_status()
                messages = list_response.json().get("messages") or []
                if not messages:
                    return CodeResult(found=False, error="No verification email in the last 10 minutes")

                for summary in messages:
                    message_response = await client.get(
                        f"{GMAIL_API}/messages/{summary['id']}",
                        params={"format": "full"},
                        headers=headers,
                    )
                    message_response.raise_for_status()
                    message = message_response.json()

                    received_at = datetime.fromtimestamp(
                        int(message.get("internalDate", "0")) / 1000, tz=timezone.utc
                    )
                    if received_at < oldest_allowed:
                        # Results are newest first; everything after this is older
                        break

                    code = extract_verification_code(extract_message_body(message.get("payload")))
                    if code:
                        logger.info(f"✅ Verification code found in email received {received_at.isoformat()}")
                        return CodeResult(found=True, code=code, source_timestamp=received_at)

                return CodeResult(found=False, error="Verification code not found in recent emails")
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"❌ Gmail verification code lookup failed: {e}")
            return CodeResult(found=False, error=str(e))

    async def wait_for_code(
        self,
        timeout: float = VERIFICATION_TIMEOUT_SECONDS,
        poll_interval: float = VERIFICATION_POLL_INTERVAL_SECONDS,
        newer_than: Optional[datetime] = None,
    ) -> CodeResult:
        """
        Poll until a code shows up or the deadline passes.
        Each attempt waits one interval first, giving the mail time to arrive;
        the last attempt lands on the deadline. Cancelling the awaiting task
        aborts the wait at the current sleep.
        """
        deadline = self._monotonic() + timeout
        attempts = 0

        while True:
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                break

            await self._sleep(min(poll_interval, remaining))
            attempts += 1

            result = await self.fetch_code(newer_than=newer_than)
            if result.found:
                return result
            logger.debug(f"⏳ Verification code not there yet (attempt {attempts}): {result.error}")

        logger.warning(f"⚠️ No verification code within {timeout:.0f}s ({attempts} attempts)")
        return CodeResult(found=False, error=TIMEOUT)
