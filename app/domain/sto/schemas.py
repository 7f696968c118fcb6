"""STO domain schemas - Pydantic models for portal data, results and API payloads"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

BookingStatus = Literal["APPLIED", "PENDING", "CONFIRMED", "IN_USE", "DONE", "CANCELLED"]


class StoModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# PORTAL DATA
# ============================================================================


class PortalSession(StoModel):
    """Authenticated portal session (opaque cookie header + expiry)"""

    cookies: str = Field(repr=False)
    expires_at: datetime


class BookingRecord(StoModel):
    """One row of the portal's reservation list, immutable per scrape"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    external_id: str  # reqstSn
    row_number: int = 0
    facility_name: str
    participants_count: int = 0
    rental_date: str  # YYYY-MM-DD
    time_ranges: list[str] = []  # raw "09:00~10:00" strings
    time_slots: list[int] = []  # hours of day, ascending, unique
    applicant_name: str
    organization: str = ""
    phone: str = ""
    status: BookingStatus
    cancel_date: Optional[str] = None
    special_note: str = ""
    created_at: str = ""

    @field_validator("time_slots")
    @classmethod
    def normalize_time_slots(cls, v: list[int]) -> list[int]:
        return sorted(set(v))


class SubmittedFile(StoModel):
    name: str
    url: Optional[str] = None


class BookingDetail(BookingRecord):
    """Reservation detail page: list fields plus applicant/fee/document fields"""

    application_date: str = ""
    full_name: str = ""
    full_phone: str = ""
    email: str = ""
    company_phone: str = ""
    purpose: str = ""

    user_type: str = ""
    discount_rate: int = 0
    rental_fee: Optional[int] = None
    bank_account: str = ""

    submitted_files: list[SubmittedFile] = []
    business_license: str = ""
    receipt_type: str = ""
    business_number: str = ""

    has_no_show: bool = False
    no_show_memo: str = ""

    studio_usage_method: str = ""
    file_delivery_method: str = ""
    pre_meeting_contact: str = ""
    other_inquiry: str = ""


class StatusChange(StoModel):
    external_id: str
    previous_status: BookingStatus
    new_status: BookingStatus
    applicant_name: str
    facility_name: str
    rental_date: str
    time_slots: list[int] = []
    changed_at: datetime


# ============================================================================
# OPERATION RESULTS
# ============================================================================


class BookingListResult(StoModel):
    success: bool
    total_count: int = 0
    bookings: list[BookingRecord] = []
    error: Optional[str] = None
    error_code: Optional[str] = None


class BookingDetailResult(StoModel):
    success: bool
    detail: Optional[BookingDetail] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class LoginResult(StoModel):
    success: bool
    needs_verification: bool = False
    session: Optional[PortalSession] = Field(default=None, exclude=True)
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.session.expires_at if self.session else None


class CodeResult(StoModel):
    found: bool
    code: Optional[str] = None
    source_timestamp: Optional[datetime] = None
    error: Optional[str] = None


class SyncResult(StoModel):
    success: bool = False
    total_count: int = 0
    new_bookings: list[BookingRecord] = []
    status_changes: list[StatusChange] = []
    errors: list[str] = []
    synced_at: datetime
    error_code: Optional[str] = None


# ============================================================================
# API PAYLOADS
# ============================================================================


class LoginRequest(StoModel):
    email: str = ""
    password: str = ""
    verification_code: Optional[str] = None
    auto_login: bool = False


class LoginResponse(StoModel):
    success: bool
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    needs_verification: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


class LoginStatusResponse(StoModel):
    is_valid: bool
    expires_at: Optional[datetime] = None


class SyncRequest(StoModel):
    max_records: Optional[int] = None
    fetch_detail: bool = True

    @field_validator("max_records")
    @classmethod
    def validate_max_records(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("maxRecords must be at least 1")
        return v


class SyncStatusResponse(StoModel):
    last_sync_time: Optional[datetime] = None
    is_syncing: bool
    is_logged_in: bool
