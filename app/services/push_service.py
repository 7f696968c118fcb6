"""
Push notifications via Firebase Cloud Messaging
"""

import asyncio
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, messaging

from ..config import APP_URL, FIREBASE_PROJECT_ID

logger = logging.getLogger(__name__)

# Tokens FCM will never deliver to again; safe to forget
STALE_TOKEN_ERRORS = (messaging.UnregisteredError,)


def is_configured() -> bool:
    return bool(FIREBASE_PROJECT_ID)


def get_firebase_app() -> Optional[firebase_admin.App]:
    """Initialize Firebase Admin once; None when push is not configured"""
    if not FIREBASE_PROJECT_ID:
        return None
    try:
        return firebase_admin.get_app()
    except ValueError:
        try:
            cred = credentials.ApplicationDefault()
            app = firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID})
            logger.info("Firebase Admin initialized with default credentials")
        except Exception:
            # Initialize without credentials (limited functionality)
            app = firebase_admin.initialize_app(options={"projectId": FIREBASE_PROJECT_ID})
            logger.info("Firebase Admin initialized with project ID only")
        return app


async def send_push(token: str, title: str, body: str, url: str = "/bookings") -> str:
    """
    Send one push message to one device.
    Returns the FCM message id; raises on delivery failure.
    """
    app = get_firebase_app()
    if app is None:
        raise RuntimeError("Push is not configured (FIREBASE_PROJECT_ID missing)")

    message = messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data={"url": url},
        webpush=messaging.WebpushConfig(
            fcm_options=messaging.WebpushFCMOptions(link=f"{APP_URL}{url}"),
        ),
    )
    # messaging.send is blocking
    return await asyncio.to_thread(messaging.send, message, False, app)
