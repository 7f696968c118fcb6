"""STO repository - Database operations for the portal session, snapshot and bookings"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ...models import SINGLETON_ID, Booking, PushSubscription, Setting, StoSession, StoStatusSnapshot


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StoRepository:
    """Repository for STO integration database operations"""

    # ------------------------------------------------------------------
    # Session row
    # ------------------------------------------------------------------

    @staticmethod
    def get_session_row(db: Session) -> Optional[StoSession]:
        return db.query(StoSession).filter(StoSession.id == SINGLETON_ID).first()

    @staticmethod
    def save_session(db: Session, encrypted_cookies: str, expires_at: datetime) -> StoSession:
        """Upsert the singleton session row"""
        row = StoRepository.get_session_row(db)
        if row is None:
            row = StoSession(id=SINGLETON_ID)
            db.add(row)
        row.cookies = encrypted_cookies
        row.expires_at = expires_at
        db.commit()
        return row

    @staticmethod
    def clear_session(db: Session, now: datetime) -> None:
        row = StoRepository.get_session_row(db)
        if row is None:
            return
        row.cookies = ""
        row.expires_at = now
        db.commit()

    @staticmethod
    def extend_session_expiry(db: Session, expires_at: datetime, now: datetime) -> bool:
        row = StoRepository.get_session_row(db)
        if row is None:
            return False
        row.expires_at = expires_at
        row.last_keepalive_at = now
        db.commit()
        return True

    @staticmethod
    def update_last_sync_time(db: Session, now: datetime) -> bool:
        row = StoRepository.get_session_row(db)
        if row is None:
            return False
        row.last_sync_at = now
        db.commit()
        return True

    @staticmethod
    def get_last_sync_time(db: Session) -> Optional[datetime]:
        row = StoRepository.get_session_row(db)
        return ensure_utc(row.last_sync_at) if row else None

    # ------------------------------------------------------------------
    # Status snapshot
    # ------------------------------------------------------------------

    @staticmethod
    def get_snapshot(db: Session) -> Optional[dict[str, str]]:
        row = db.query(StoStatusSnapshot).filter(StoStatusSnapshot.id == SINGLETON_ID).first()
        return dict(row.statuses or {}) if row else None

    @staticmethod
    def save_snapshot(db: Session, statuses: dict[str, str]) -> None:
        row = db.query(StoStatusSnapshot).filter(StoStatusSnapshot.id == SINGLETON_ID).first()
        if row is None:
            row = StoStatusSnapshot(id=SINGLETON_ID)
            db.add(row)
        # Assign a fresh dict so the JSON column is flagged dirty
        row.statuses = dict(statuses)
        db.commit()

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    @staticmethod
    def get_booking_statuses(db: Session) -> dict[str, str]:
        """reqstSn -> status for every booking imported from the portal"""
        rows = (
            db.query(Booking.sto_reqst_sn, Booking.status)
            .filter(Booking.sto_reqst_sn.isnot(None))
            .all()
        )
        return {sn: status for sn, status in rows}

    @staticmethod
    def get_booking_by_reqst_sn(db: Session, reqst_sn: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.sto_reqst_sn == reqst_sn).first()

    @staticmethod
    def insert_booking(db: Session, **fields) -> Booking:
        booking = Booking(**fields)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def update_booking_status(db: Session, reqst_sn: str, status: str) -> bool:
        booking = StoRepository.get_booking_by_reqst_sn(db, reqst_sn)
        if booking is None:
            return False
        booking.status = status
        booking.payment_confirmed = status == "CONFIRMED"
        db.commit()
        return True

    # ------------------------------------------------------------------
    # Notification recipients
    # ------------------------------------------------------------------

    @staticmethod
    def get_setting(db: Session, key: str) -> Optional[str]:
        row = db.query(Setting).filter(Setting.key == key).first()
        return row.value if row else None

    @staticmethod
    def get_push_tokens(db: Session) -> list[str]:
        return [token for (token,) in db.query(PushSubscription.token).all()]

    @staticmethod
    def delete_push_token(db: Session, token: str) -> None:
        db.query(PushSubscription).filter(PushSubscription.token == token).delete()
        db.commit()
