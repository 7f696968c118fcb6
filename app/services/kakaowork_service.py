"""
KakaoWork chat bot
Sends plain-text booking alerts to staff by email address
"""

import logging
from typing import Optional

import httpx

from ..config import KAKAOWORK_API_URL, KAKAOWORK_BOT_KEY

logger = logging.getLogger(__name__)


class KakaoWorkError(Exception):
    pass


def is_configured() -> bool:
    return bool(KAKAOWORK_BOT_KEY)


async def send_message_by_email(
    email: str,
    text: str,
    bot_key: Optional[str] = KAKAOWORK_BOT_KEY,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Send a chat message to the KakaoWork user registered with `email`"""
    if not bot_key:
        raise KakaoWorkError("KakaoWork is not configured (KAKAOWORK_BOT_KEY missing)")

    async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
        response = await client.post(
            f"{KAKAOWORK_API_URL}/messages.send_by_email",
            headers={"Authorization": f"Bearer {bot_key}"},
            json={"email": email, "text": text},
        )

    data = response.json() if response.content else {}
    # KakaoWork answers 200 with {"success": false, "error": {...}} for logical failures
    if response.status_code != 200 or not data.get("success"):
        error = (data.get("error") or {}).get("message") or f"HTTP {response.status_code}"
        raise KakaoWorkError(f"KakaoWork send to {email} failed: {error}")

    logger.info(f"💬 KakaoWork message sent to {email}")
    return data
