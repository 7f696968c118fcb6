"""
Booking status vocabulary and derived display status
Portal texts map onto the internal status enum; labels are used by notifications
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

KST = timezone(timedelta(hours=9))

APPLIED = "APPLIED"
PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
IN_USE = "IN_USE"
DONE = "DONE"
CANCELLED = "CANCELLED"

# Portal status text -> internal status
PORTAL_STATUS_MAP = {
    "신청접수": APPLIED,
    "입금대기": PENDING,
    "대관확정": CONFIRMED,
    "예약취소": CANCELLED,
}

STATUS_LABELS = {
    APPLIED: "applied",
    PENDING: "awaiting payment",
    CONFIRMED: "approved",
    IN_USE: "in use",
    DONE: "completed",
    CANCELLED: "cancelled",
}

# Portal facility name -> internal studio id
# 1 = main studio, 3/4 = single-person studios A/B
FACILITY_MAP = {
    "대형 스튜디오": 1,
    "1인 스튜디오 #1": 3,
    "1인 스튜디오 #2": 4,
    "1인 스튜디오 A": 3,
    "1인 스튜디오 B": 4,
}
DEFAULT_STUDIO_ID = 1

_HOUR_RE = re.compile(r"(\d{1,2}):")


def status_label(status: Optional[str]) -> str:
    """Human-readable label, falling back to the raw code"""
    if not status:
        return "-"
    return STATUS_LABELS.get(status, status)


def studio_id_for(facility_name: str) -> int:
    return FACILITY_MAP.get(facility_name.strip(), DEFAULT_STUDIO_ID)


def time_range_to_hour(time_range: str) -> Optional[int]:
    """'09:00~10:00' -> 9"""
    match = _HOUR_RE.search(time_range)
    return int(match.group(1)) if match else None


def time_ranges_to_slots(time_ranges: list[str]) -> list[int]:
    hours = {time_range_to_hour(t) for t in time_ranges}
    return sorted(h for h in hours if h is not None)


def compute_display_status(
    status: str, rental_date: str, time_slots: list[int], now: Optional[datetime] = None
) -> str:
    """
    Derive IN_USE / DONE for a confirmed booking from the KST wall clock.
    Only CONFIRMED bookings change; everything else is returned as-is.
    This is a display policy and never feeds the sync diff.
    """
    if status != CONFIRMED:
        return status

    now = (now or datetime.now(timezone.utc)).astimezone(KST)
    try:
        booking_day = date.fromisoformat(rental_date)
    except ValueError:
        return status

    today = now.date()
    if booking_day < today:
        return DONE
    if booking_day > today or not time_slots:
        return CONFIRMED

    if min(time_slots) <= now.hour <= max(time_slots):
        return IN_USE
    if now.hour > max(time_slots):
        return DONE
    return CONFIRMED


def is_business_hours(now: Optional[datetime] = None, start: int = 9, end: int = 18) -> bool:
    """Business hours check in KST (start inclusive, end exclusive)"""
    now = (now or datetime.now(timezone.utc)).astimezone(KST)
    return start <= now.hour < end
