from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from .database import Base

# Singleton rows: one portal session and one status snapshot per deployment
SINGLETON_ID = 1


class StoSession(Base):
    """Persisted copy of the portal session (cold-start fallback only)"""

    __tablename__ = "sto_sessions"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    cookies = Column(Text, nullable=False, default="")  # Fernet-encrypted cookie header
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_keepalive_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class StoStatusSnapshot(Base):
    """Last observed portal status per reservation, keyed by reqstSn"""

    __tablename__ = "sto_status_snapshots"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    statuses = Column(JSON, nullable=False, default=dict)  # {external_id: status}

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    sto_reqst_sn = Column(String(50), unique=True, index=True, nullable=True)
    studio_id = Column(Integer, nullable=False, default=1)
    rental_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    time_slots = Column(JSON, default=list, nullable=False)  # hours of day, e.g. [9, 10]
    applicant_name = Column(String(255), nullable=False)
    organization = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    event_name = Column(String(500), nullable=True)
    purpose = Column(Text, nullable=True)
    participants_count = Column(Integer, default=0)
    payment_confirmed = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), nullable=False, default="APPLIED")
    fee = Column(Integer, nullable=True)

    # Detail page fields
    special_note = Column(Text, nullable=True)
    user_type = Column(String(255), nullable=True)
    discount_rate = Column(Integer, default=0)
    company_phone = Column(String(50), nullable=True)
    business_license = Column(String(500), nullable=True)
    receipt_type = Column(String(100), nullable=True)
    business_number = Column(String(50), nullable=True)
    has_no_show = Column(Boolean, default=False)
    no_show_memo = Column(Text, nullable=True)
    studio_usage_method = Column(Text, nullable=True)
    file_delivery_method = Column(Text, nullable=True)
    pre_meeting_contact = Column(Text, nullable=True)
    other_inquiry = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Setting(Base):
    """Key/value application settings (e.g. chat recipients as a JSON list)"""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class PushSubscription(Base):
    """FCM device token registered by a staff member's browser or phone"""

    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)
    token = Column(String(500), unique=True, nullable=False)
    device_type = Column(String(20), nullable=True)  # ios, android, web

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
