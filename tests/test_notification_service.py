import asyncio
import json
from datetime import datetime, timezone

from firebase_admin import messaging

from app.domain.sto.repository import StoRepository
from app.domain.sto.schemas import BookingRecord, StatusChange
from app.models import PushSubscription, Setting
from app.services.notification_service import NotificationDispatcher, status_change_message

BOOKING = BookingRecord(
    external_id="A",
    facility_name="대형 스튜디오",
    rental_date="2026-03-15",
    time_slots=[9, 10],
    applicant_name="홍길동",
    status="APPLIED",
)
CHANGE = StatusChange(
    external_id="B",
    previous_status="PENDING",
    new_status="CONFIRMED",
    applicant_name="김철수",
    facility_name="1인 스튜디오 #1",
    rental_date="2026-03-16",
    time_slots=[14],
    changed_at=datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc),
)


class Recorder:
    """Async sender that fails for selected recipients"""

    def __init__(self, failing=(), error=None):
        self.failing = set(failing)
        self.error = error
        self.sent = []

    async def __call__(self, recipient, *args):
        if recipient in self.failing:
            raise self.error or RuntimeError(f"delivery to {recipient} failed")
        self.sent.append((recipient, *args))
        return {"id": "ok"}


def seed_recipients(session_factory, tokens=(), chat=None):
    db = session_factory()
    try:
        for token in tokens:
            db.add(PushSubscription(token=token, device_type="web"))
        if chat is not None:
            db.add(Setting(key="kakaowork_recipients", value=chat))
        db.commit()
    finally:
        db.close()


def make_dispatcher(session_factory, push, email, chat, admin_emails=("admin@studio.kr", "ops@studio.kr")):
    return NotificationDispatcher(
        session_factory,
        admin_emails=list(admin_emails),
        push_sender=push,
        chat_sender=chat,
        new_booking_emailer=email,
        status_change_emailer=email,
    )


def test_every_channel_and_recipient_is_attempted(session_factory):
    seed_recipients(session_factory, tokens=["tok-1", "tok-2"], chat=json.dumps(["staff@studio.kr"]))
    push, email, chat = Recorder(), Recorder(), Recorder()

    result = asyncio.run(make_dispatcher(session_factory, push, email, chat).dispatch([BOOKING], [CHANGE]))

    # 2 events x (2 push + 2 email + 1 chat)
    assert result == {"attempted": 10, "sent": 10, "failed": 0}
    assert len(push.sent) == 4
    assert [args[1] for args in email.sent].count(BOOKING) == 2
    assert len(chat.sent) == 2


def test_one_failure_does_not_stop_the_others(session_factory):
    seed_recipients(session_factory, tokens=["tok-1"], chat=json.dumps(["staff@studio.kr"]))
    push = Recorder()
    email = Recorder(failing={"admin@studio.kr"})
    chat = Recorder(failing={"staff@studio.kr"})

    result = asyncio.run(make_dispatcher(session_factory, push, email, chat).dispatch([BOOKING], []))

    assert result == {"attempted": 4, "sent": 2, "failed": 2}
    assert [r for r, *_ in email.sent] == ["ops@studio.kr"]
    assert [r for r, *_ in push.sent] == ["tok-1"]


def test_unregistered_push_token_is_removed(session_factory):
    seed_recipients(session_factory, tokens=["stale", "fresh"])
    push = Recorder(failing={"stale"}, error=messaging.UnregisteredError("Requested entity was not found."))

    asyncio.run(make_dispatcher(session_factory, push, Recorder(), Recorder(), admin_emails=()).dispatch([BOOKING], []))

    db = session_factory()
    try:
        assert StoRepository.get_push_tokens(db) == ["fresh"]
    finally:
        db.close()


def test_bad_chat_setting_skips_chat_only(session_factory):
    seed_recipients(session_factory, tokens=["tok-1"], chat="not json")
    push, email, chat = Recorder(), Recorder(), Recorder()

    result = asyncio.run(make_dispatcher(session_factory, push, email, chat).dispatch([BOOKING], []))

    assert result["failed"] == 0
    assert chat.sent == []
    assert len(push.sent) == 1


def test_nothing_to_send(session_factory):
    push = Recorder()

    result = asyncio.run(make_dispatcher(session_factory, push, Recorder(), Recorder()).dispatch([], []))

    assert result == {"attempted": 0, "sent": 0, "failed": 0}
    assert push.sent == []


def test_status_change_message_uses_labels():
    title, body = status_change_message(CHANGE)

    assert "approved" in title
    assert "awaiting payment -> approved" in body
    assert "14:00-15:00" in body


def test_unconfigured_channels_are_skipped(session_factory):
    seed_recipients(session_factory, tokens=["tok-1"], chat=json.dumps(["staff@studio.kr"]))
    # Built-in senders without FIREBASE_PROJECT_ID, RESEND_API_KEY or KAKAOWORK_BOT_KEY
    dispatcher = NotificationDispatcher(session_factory, admin_emails=["admin@studio.kr"])

    result = asyncio.run(dispatcher.dispatch([BOOKING], [CHANGE]))

    assert dispatcher.enabled == {"push": False, "email": False, "chat": False}
    assert result == {"attempted": 0, "sent": 0, "failed": 0}


def test_injected_status_change_emailer_alone_enables_email(session_factory):
    # New-booking mail stays on the built-in sender, which has no RESEND_API_KEY here
    status_mail = Recorder()
    dispatcher = NotificationDispatcher(
        session_factory,
        admin_emails=["admin@studio.kr"],
        status_change_emailer=status_mail,
    )

    result = asyncio.run(dispatcher.dispatch([BOOKING], [CHANGE]))

    assert dispatcher.enabled["email"] is True
    assert dispatcher.emailers["new_booking"] is None
    assert status_mail.sent == [("admin@studio.kr", CHANGE)]
    assert result == {"attempted": 1, "sent": 1, "failed": 0}
