"""
Portal session store
The in-memory session is authoritative while the process lives; the database
row is a cold-start fallback written through on every successful login.
"""

import base64
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import sessionmaker

from ...config import SECRET_KEY, STO_SESSION_EXPIRY_MINUTES
from .repository import StoRepository, ensure_utc, utc_now
from .schemas import PortalSession

logger = logging.getLogger(__name__)


# Generate encryption key from SECRET_KEY for the stored cookie header
def get_fernet_key() -> bytes:
    key = hashlib.sha256(SECRET_KEY.encode()).digest()
    return base64.urlsafe_b64encode(key)


class SessionStore:
    """Owns the single portal session for this process"""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
        lifetime_minutes: int = STO_SESSION_EXPIRY_MINUTES,
    ):
        self._session: Optional[PortalSession] = None
        self._session_factory = session_factory
        self._clock = clock
        self.lifetime = timedelta(minutes=lifetime_minutes)
        self._cipher = Fernet(get_fernet_key())

    def new_session(self, cookies: str) -> PortalSession:
        return PortalSession(cookies=cookies, expires_at=self._clock() + self.lifetime)

    def set_session(self, session: PortalSession) -> None:
        self._session = session

    def get_current_session(self) -> Optional[PortalSession]:
        return self._session

    def is_session_valid(self) -> bool:
        return self._session is not None and self._clock() < self._session.expires_at

    def invalidate(self) -> None:
        """Explicit logout: drop the session in memory and in the durable row"""
        self._session = None
        db = self._session_factory()
        try:
            StoRepository.clear_session(db, self._clock())
            logger.info("🔒 STO session cleared")
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to clear stored STO session: {e}")
        finally:
            db.close()

    def extend(self) -> Optional[PortalSession]:
        """
        Push expiry forward after a successful keep-alive.
        An already expired session is never revived.
        """
        if not self.is_session_valid():
            return None

        now = self._clock()
        self._session = self._session.model_copy(update={"expires_at": now + self.lifetime})

        db = self._session_factory()
        try:
            StoRepository.extend_session_expiry(db, self._session.expires_at, now)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to extend stored STO session expiry: {e}")
        finally:
            db.close()

        logger.info(f"🔄 STO session extended until {self._session.expires_at.isoformat()}")
        return self._session

    # ------------------------------------------------------------------
    # Durable copy
    # ------------------------------------------------------------------

    def persist(self, session: PortalSession) -> bool:
        """Best-effort write-through; failures are logged, never raised"""
        db = self._session_factory()
        try:
            encrypted = self._cipher.encrypt(session.cookies.encode()).decode()
            StoRepository.save_session(db, encrypted, session.expires_at)
            logger.info("💾 STO session saved to database")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to persist STO session: {e}")
            return False
        finally:
            db.close()

    def load_from_durable_store(self) -> Optional[PortalSession]:
        """Read the stored session; empty, expired or undecryptable rows yield None"""
        db = self._session_factory()
        try:
            row = StoRepository.get_session_row(db)
            if row is None or not row.cookies or not row.cookies.strip():
                logger.info("ℹ️ No stored STO session")
                return None

            expires_at = ensure_utc(row.expires_at)
            if expires_at <= self._clock():
                logger.info("ℹ️ Stored STO session has expired")
                return None

            cookies = self._cipher.decrypt(row.cookies.encode()).decode()
            logger.info(f"✅ Loaded STO session from database, expires {expires_at.isoformat()}")
            return PortalSession(cookies=cookies, expires_at=expires_at)
        except InvalidToken:
            logger.error("❌ Stored STO session could not be decrypted (SECRET_KEY changed?)")
            return None
        except Exception as e:
            logger.error(f"❌ Failed to load STO session from database: {e}")
            return None
        finally:
            db.close()

    def restore(self) -> bool:
        """Make sure a valid session is in memory, falling back to the durable copy"""
        if self.is_session_valid():
            return True
        stored = self.load_from_durable_store()
        if stored is None:
            return False
        self.set_session(stored)
        return self.is_session_valid()

    # ------------------------------------------------------------------
    # Sync bookkeeping kept on the same row
    # ------------------------------------------------------------------

    def record_sync(self, synced_at: datetime) -> None:
        db = self._session_factory()
        try:
            StoRepository.update_last_sync_time(db, synced_at)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to record last sync time: {e}")
        finally:
            db.close()

    def last_sync_time(self) -> Optional[datetime]:
        db = self._session_factory()
        try:
            return StoRepository.get_last_sync_time(db)
        except Exception as e:
            logger.error(f"❌ Failed to read last sync time: {e}")
            return None
        finally:
            db.close()
