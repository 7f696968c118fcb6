"""
Unified Notification Service
Fans out STO booking events to push, email and chat.
Every (event, channel, recipient) send is its own task; one failure never
stops the others and nothing is raised back to the sync that produced the events.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import sessionmaker

from ..config import ADMIN_NOTIFICATION_EMAILS, STUDIO_NAME
from ..domain.sto.errors import NOTIFICATION_FAILED
from ..domain.sto.repository import StoRepository
from ..domain.sto.schemas import BookingRecord, StatusChange
from ..domain.sto.status import status_label
from .. import email_service
from ..email_service import send_new_booking_email, send_status_change_email
from . import kakaowork_service, push_service
from .kakaowork_service import send_message_by_email
from .push_service import STALE_TOKEN_ERRORS, send_push

logger = logging.getLogger(__name__)

KAKAOWORK_RECIPIENTS_KEY = "kakaowork_recipients"

PUSH = "push"
EMAIL = "email"
CHAT = "chat"


def _slot_text(time_slots: list[int]) -> str:
    if not time_slots:
        return ""
    return f" {min(time_slots):02d}:00-{max(time_slots) + 1:02d}:00"


def new_booking_message(booking: BookingRecord) -> tuple[str, str]:
    title = f"[{STUDIO_NAME}] New booking"
    body = (
        f"{booking.applicant_name} / {booking.facility_name} / "
        f"{booking.rental_date}{_slot_text(booking.time_slots)} ({status_label(booking.status)})"
    )
    return title, body


def status_change_message(change: StatusChange) -> tuple[str, str]:
    new_label = status_label(change.new_status)
    title = f"[{STUDIO_NAME}] Booking {new_label}"
    body = (
        f"{change.applicant_name}: {status_label(change.previous_status)} -> {new_label} "
        f"({change.facility_name}, {change.rental_date}{_slot_text(change.time_slots)})"
    )
    return title, body


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: sessionmaker,
        admin_emails: Optional[list[str]] = None,
        push_sender: Callable[..., Awaitable] = send_push,
        chat_sender: Callable[..., Awaitable] = send_message_by_email,
        new_booking_emailer: Callable[..., Awaitable] = send_new_booking_email,
        status_change_emailer: Callable[..., Awaitable] = send_status_change_email,
    ):
        self._session_factory = session_factory
        self.admin_emails = ADMIN_NOTIFICATION_EMAILS if admin_emails is None else admin_emails
        self.push_sender = push_sender
        self.chat_sender = chat_sender
        # Injected senders are always used; the built-in ones need their API keys
        email_configured = email_service.is_configured()
        self.emailers: dict[str, Optional[Callable[..., Awaitable]]] = {
            "new_booking": (
                new_booking_emailer
                if new_booking_emailer is not send_new_booking_email or email_configured
                else None
            ),
            "status_change": (
                status_change_emailer
                if status_change_emailer is not send_status_change_email or email_configured
                else None
            ),
        }
        self.enabled = {
            PUSH: push_sender is not send_push or push_service.is_configured(),
            EMAIL: any(emailer is not None for emailer in self.emailers.values()),
            CHAT: chat_sender is not send_message_by_email or kakaowork_service.is_configured(),
        }

    def _load_recipients(self) -> tuple[list[str], list[str]]:
        """Push tokens and chat recipients; a lookup failure means no recipients for that channel"""
        push_tokens: list[str] = []
        chat_recipients: list[str] = []
        db = self._session_factory()
        try:
            if self.enabled[PUSH]:
                try:
                    push_tokens = StoRepository.get_push_tokens(db)
                except Exception as e:
                    logger.error(f"❌ Failed to load push subscriptions: {e}")

            if self.enabled[CHAT]:
                try:
                    raw = StoRepository.get_setting(db, KAKAOWORK_RECIPIENTS_KEY)
                    if raw:
                        chat_recipients = [r for r in json.loads(raw) if isinstance(r, str) and r.strip()]
                except (ValueError, TypeError) as e:
                    logger.error(f"❌ Invalid {KAKAOWORK_RECIPIENTS_KEY} setting: {e}")
                except Exception as e:
                    logger.error(f"❌ Failed to load chat recipients: {e}")
        finally:
            db.close()
        return push_tokens, chat_recipients

    def _forget_push_token(self, token: str) -> None:
        db = self._session_factory()
        try:
            StoRepository.delete_push_token(db, token)
            logger.info("🧹 Removed unregistered push token")
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to remove push token: {e}")
        finally:
            db.close()

    async def dispatch(
        self, new_bookings: list[BookingRecord], status_changes: list[StatusChange]
    ) -> dict:
        """
        Send every event on every channel to every recipient.

        Returns:
            Dict with attempted/sent/failed counts
        """
        result = {"attempted": 0, "sent": 0, "failed": 0}
        if not new_bookings and not status_changes:
            return result

        for channel, enabled in self.enabled.items():
            if not enabled:
                logger.info(f"ℹ️ {channel} channel not configured, skipping")

        push_tokens, chat_recipients = await asyncio.to_thread(self._load_recipients)

        events = [("new_booking", booking, *new_booking_message(booking)) for booking in new_bookings]
        events += [("status_change", change, *status_change_message(change)) for change in status_changes]

        labels: list[tuple[str, str, str]] = []
        sends: list[Awaitable] = []
        for event_type, event, title, body in events:
            for token in push_tokens:
                labels.append((event_type, PUSH, token))
                sends.append(self.push_sender(token, title, body))

            emailer = self.emailers[event_type]
            for email in self.admin_emails if emailer is not None else []:
                labels.append((event_type, EMAIL, email))
                sends.append(emailer(email, event))

            for recipient in chat_recipients:
                labels.append((event_type, CHAT, recipient))
                sends.append(self.chat_sender(recipient, f"{title}\n{body}"))

        if not sends:
            logger.info("ℹ️ No notification recipients configured, skipping dispatch")
            return result

        outcomes = await asyncio.gather(*sends, return_exceptions=True)

        for (event_type, channel, recipient), outcome in zip(labels, outcomes):
            result["attempted"] += 1
            if isinstance(outcome, BaseException):
                result["failed"] += 1
                shown = recipient if channel != PUSH else f"{recipient[:12]}..."
                logger.error(f"❌ {NOTIFICATION_FAILED}: {event_type} via {channel} to {shown}: {outcome}")
                if channel == PUSH and isinstance(outcome, STALE_TOKEN_ERRORS):
                    await asyncio.to_thread(self._forget_push_token, recipient)
            else:
                result["sent"] += 1

        logger.info(
            f"🔔 Notifications dispatched: {result['sent']} sent, {result['failed']} failed "
            f"({len(new_bookings)} new, {len(status_changes)} changes)"
        )
        return result
