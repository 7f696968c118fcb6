"""
STO portal HTTP client
Thin httpx wrapper: form posts for login, cookie-authenticated page fetches.
Every call uses a bounded request timeout so a stuck portal cannot hold a sync open.
"""

import logging
from typing import Optional

import httpx

from ...config import (
    STO_BASE_URL,
    STO_LOGIN_ACTION_PATH,
    STO_LOGIN_PATH,
    STO_REQUEST_TIMEOUT,
    STO_VERIFY_ACTION_PATH,
)
from .errors import AUTH_REQUIRED, NETWORK_ERROR, StoError
from .parser import classify_login_response, is_login_page

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
}

# Login form field names
USER_ID_FIELD = "userId"
PASSWORD_FIELD = "userPw"
CODE_FIELD = "certNo"


def serialize_cookies(cookies: httpx.Cookies) -> str:
    """Cookie jar -> Cookie header value (the opaque session material)"""
    return "; ".join(f"{cookie.name}={cookie.value}" for cookie in cookies.jar)


class PortalClient:
    """Talks HTTP to the portal; knows nothing about sessions or sync state"""

    def __init__(
        self,
        base_url: str = STO_BASE_URL,
        timeout: float = STO_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, cookies: Optional[httpx.Cookies] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=BROWSER_HEADERS,
            cookies=cookies,
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    @staticmethod
    def _check_response(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            logger.error(f"❌ Portal {action} failed: HTTP {response.status_code}")
            raise StoError(NETWORK_ERROR, f"Portal {action} returned HTTP {response.status_code}")

    async def submit_credentials(self, email: str, password: str) -> tuple[str, httpx.Cookies]:
        """
        Open the login page (for the initial cookie) and post credentials.
        Returns the login outcome and the cookie jar of the half- or fully
        authenticated session.
        """
        try:
            async with self._client() as client:
                page = await client.get(STO_LOGIN_PATH)
                self._check_response(page, "login page")

                response = await client.post(
                    STO_LOGIN_ACTION_PATH,
                    data={USER_ID_FIELD: email, PASSWORD_FIELD: password},
                    headers={"Referer": f"{self.base_url}{STO_LOGIN_PATH}"},
                )
                self._check_response(response, "login")
                return classify_login_response(response.text), client.cookies
        except httpx.HTTPError as e:
            logger.error(f"❌ Portal unreachable during login: {e}")
            raise StoError(NETWORK_ERROR, f"Portal unreachable: {e}") from e

    async def submit_verification_code(
        self, cookies: httpx.Cookies, code: str
    ) -> tuple[str, httpx.Cookies]:
        """Post the emailed one-time code on the pending login session"""
        try:
            async with self._client(cookies=cookies) as client:
                response = await client.post(
                    STO_VERIFY_ACTION_PATH,
                    data={CODE_FIELD: code},
                    headers={"Referer": f"{self.base_url}{STO_LOGIN_ACTION_PATH}"},
                )
                self._check_response(response, "verification")
                return classify_login_response(response.text), client.cookies
        except httpx.HTTPError as e:
            logger.error(f"❌ Portal unreachable during verification: {e}")
            raise StoError(NETWORK_ERROR, f"Portal unreachable: {e}") from e

    async def get_page(self, path: str, cookie_header: str, params: Optional[dict] = None) -> str:
        """
        Fetch an authenticated page.
        Raises AUTH_REQUIRED when the portal answers with its login form.
        """
        try:
            async with self._client() as client:
                response = await client.get(path, params=params, headers={"Cookie": cookie_header})
        except httpx.HTTPError as e:
            logger.error(f"❌ Portal unreachable: GET {path}: {e}")
            raise StoError(NETWORK_ERROR, f"Portal unreachable: {e}") from e

        self._check_response(response, f"GET {path}")
        if is_login_page(response.text):
            logger.warning(f"⚠️ Portal redirected GET {path} to the login page - session expired")
            raise StoError(AUTH_REQUIRED, "Portal session expired. Please log in again.")
        return response.text
