"""STO service container - one instance of each collaborator per process"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.orm import sessionmaker

from ...services.gmail_service import GmailVerificationCodeRetriever
from ...services.notification_service import NotificationDispatcher
from ...sync_lock import RedisSyncLock
from .auth_flow import AuthenticationFlow
from .client import PortalClient
from .errors import AUTH_REQUIRED, StoError
from .schemas import PortalSession
from .scraper import LOGIN_REQUIRED_MESSAGE, BookingScraper
from .session_store import SessionStore
from .sync import SnapshotStore, SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class StoServices:
    session_store: SessionStore
    code_retriever: GmailVerificationCodeRetriever
    auth_flow: AuthenticationFlow
    scraper: BookingScraper
    snapshot_store: SnapshotStore
    sync_engine: SyncEngine
    dispatcher: NotificationDispatcher

    def startup(self) -> None:
        """Recover the durable session and seed the diff baseline"""
        if self.session_store.restore():
            logger.info("✅ STO session restored from database")
        else:
            logger.info("ℹ️ No valid STO session on startup - login required")
        self.sync_engine.initialize_previous_status_map()

    async def keep_alive(self) -> PortalSession:
        """
        Touch the first list page so the portal keeps our session warm, then
        extend its expiry. Raises StoError(AUTH_REQUIRED) without a valid session.
        """
        if not self.session_store.restore():
            raise StoError(AUTH_REQUIRED, LOGIN_REQUIRED_MESSAGE)

        await self.scraper.fetch_list_page(1)
        session = self.session_store.extend()
        if session is None:
            # Expired while the page was loading; never revive it
            raise StoError(AUTH_REQUIRED, LOGIN_REQUIRED_MESSAGE)
        return session


def build_sto_services(
    session_factory: sessionmaker,
    portal_transport: Optional[httpx.AsyncBaseTransport] = None,
    code_retriever: Optional[GmailVerificationCodeRetriever] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    sync_lock: Optional[RedisSyncLock] = None,
) -> StoServices:
    session_store = SessionStore(session_factory)
    client = PortalClient(transport=portal_transport)
    code_retriever = code_retriever or GmailVerificationCodeRetriever()
    scraper = BookingScraper(session_store, client)
    snapshot_store = SnapshotStore(session_factory)

    return StoServices(
        session_store=session_store,
        code_retriever=code_retriever,
        auth_flow=AuthenticationFlow(session_store, client, code_retriever),
        scraper=scraper,
        snapshot_store=snapshot_store,
        sync_engine=SyncEngine(scraper, session_store, snapshot_store, session_factory, lock=sync_lock),
        dispatcher=dispatcher or NotificationDispatcher(session_factory),
    )
