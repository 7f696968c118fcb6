"""
STO authentication flow
Credential login with the portal's emailed one-time code, either typed in by
staff (manual path) or read from the mailbox (automatic path).
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import httpx

from ...config import VERIFICATION_POLL_INTERVAL_SECONDS, VERIFICATION_TIMEOUT_SECONDS
from ...services.gmail_service import GmailVerificationCodeRetriever
from .client import PortalClient, serialize_cookies
from .errors import AUTH_FAILED, INVALID_CODE, NEEDS_VERIFICATION, VERIFICATION_TIMEOUT, StoError
from .parser import LOGIN_FAILED, LOGIN_SUCCESS
from .repository import utc_now
from .schemas import LoginResult
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AWAITING_VERIFICATION = "AWAITING_VERIFICATION"
    AUTHENTICATED = "AUTHENTICATED"
    FAILED = "FAILED"


class AuthenticationFlow:
    """
    UNAUTHENTICATED -> AWAITING_VERIFICATION -> AUTHENTICATED, or -> FAILED.

    Between the credential step and the code step the half-authenticated
    portal cookies are kept here, so resubmitting with a code does not make
    the portal send a new one.
    """

    def __init__(
        self,
        session_store: SessionStore,
        client: PortalClient,
        code_retriever: GmailVerificationCodeRetriever,
        verification_timeout: float = VERIFICATION_TIMEOUT_SECONDS,
        poll_interval: float = VERIFICATION_POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_store = session_store
        self.client = client
        self.code_retriever = code_retriever
        self.verification_timeout = verification_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = AuthState.UNAUTHENTICATED
        self._pending_cookies: Optional[httpx.Cookies] = None
        self._pending_email: Optional[str] = None

    @property
    def awaiting_verification(self) -> bool:
        return self.state == AuthState.AWAITING_VERIFICATION and self._pending_cookies is not None

    def _reset_pending(self) -> None:
        self._pending_cookies = None
        self._pending_email = None

    def _fail(self, code: str, message: str) -> LoginResult:
        self.state = AuthState.FAILED
        self._reset_pending()
        logger.warning(f"🔒 STO login failed: {code}")
        return LoginResult(success=False, error=message, error_code=code)

    def _complete(self, cookies: httpx.Cookies) -> LoginResult:
        session = self.session_store.new_session(serialize_cookies(cookies))
        self.session_store.set_session(session)
        # Durable copy is best-effort; a failed write never fails the login
        self.session_store.persist(session)

        self.state = AuthState.AUTHENTICATED
        self._reset_pending()
        logger.info(f"✅ STO login successful, session valid until {session.expires_at.isoformat()}")
        return LoginResult(success=True, session=session)

    async def _submit_credentials(self, email: str, password: str) -> Optional[LoginResult]:
        """Post credentials; returns a terminal result, or None when a code is now required"""
        outcome, cookies = await self.client.submit_credentials(email, password)
        if outcome == LOGIN_FAILED:
            return self._fail(AUTH_FAILED, "Invalid STO email or password.")
        if outcome == LOGIN_SUCCESS:
            return self._complete(cookies)

        self.state = AuthState.AWAITING_VERIFICATION
        self._pending_cookies = cookies
        self._pending_email = email
        logger.info("📧 STO requested an email verification code")
        return None

    async def _submit_code(self, code: str) -> LoginResult:
        outcome, cookies = await self.client.submit_verification_code(self._pending_cookies, code.strip())
        if outcome == LOGIN_SUCCESS:
            return self._complete(cookies)
        return self._fail(INVALID_CODE, "The verification code is incorrect or has expired.")

    async def login(self, email: str, password: str, code: Optional[str] = None) -> LoginResult:
        """Manual path: the caller supplies the code on a second call"""
        async with self._lock:
            try:
                if code and self.awaiting_verification and self._pending_email == email:
                    return await self._submit_code(code)

                result = await self._submit_credentials(email, password)
                if result is not None:
                    return result

                if not code:
                    return LoginResult(
                        success=False,
                        needs_verification=True,
                        error="Enter the verification code sent to your email.",
                        error_code=NEEDS_VERIFICATION,
                    )
                return await self._submit_code(code)
            except StoError as e:
                logger.error(f"❌ STO login error: {e.message}")
                return LoginResult(success=False, error=e.message, error_code=e.code)

    async def auto_login(self, email: str, password: str) -> LoginResult:
        """Automatic path: the code is read from the mailbox"""
        async with self._lock:
            try:
                challenged_at = self._clock()
                result = await self._submit_credentials(email, password)
                if result is not None:
                    return result

                code_result = await self.code_retriever.wait_for_code(
                    timeout=self.verification_timeout,
                    poll_interval=self.poll_interval,
                    newer_than=challenged_at,
                )
                if not code_result.found:
                    return self._fail(
                        VERIFICATION_TIMEOUT,
                        f"No verification code arrived within {self.verification_timeout:.0f} seconds.",
                    )

                logger.info(f"🔑 Verification code retrieved from mailbox ({code_result.code[:2]}****)")
                return await self._submit_code(code_result.code)
            except StoError as e:
                logger.error(f"❌ STO auto login error: {e.message}")
                return LoginResult(success=False, error=e.message, error_code=e.code)

    def logout(self) -> None:
        self.session_store.invalidate()
        self._reset_pending()
        self.state = AuthState.UNAUTHENTICATED
