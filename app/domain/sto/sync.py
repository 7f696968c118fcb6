"""
STO sync engine
Scrape -> classify against the previous status snapshot -> advance snapshot ->
persist bookings. Only one sync runs at a time per process (and, with Redis,
per deployment).
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import sessionmaker

from ...config import STO_DETAIL_DELAY, STO_ITEMS_PER_PAGE, SYNC_MAX_RECORDS
from ...sync_lock import RedisSyncLock
from .errors import ALREADY_SYNCING
from .repository import StoRepository, utc_now
from .schemas import BookingRecord, StatusChange, SyncResult
from .scraper import BookingScraper
from .session_store import SessionStore
from .status import studio_id_for

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    externalId -> last observed status.
    Memory is authoritative; the durable row is written best-effort after each
    successful sync and read back on startup.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._statuses: dict[str, str] = {}
        self.initialized = False

    def get(self) -> dict[str, str]:
        return dict(self._statuses)

    def __len__(self) -> int:
        return len(self._statuses)

    def update(self, statuses: dict[str, str]) -> None:
        self._statuses.update(statuses)

        db = self._session_factory()
        try:
            StoRepository.save_snapshot(db, self._statuses)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to persist status snapshot: {e}")
        finally:
            db.close()

    def initialize_previous_status_map(self) -> bool:
        """Seed from the snapshot row, or from stored bookings when there is no row yet"""
        db = self._session_factory()
        try:
            statuses = StoRepository.get_snapshot(db)
            source = "snapshot"
            if statuses is None:
                statuses = StoRepository.get_booking_statuses(db)
                source = "bookings table"
        except Exception as e:
            logger.error(f"❌ Failed to load previous status map: {e}")
            return False
        finally:
            db.close()

        self._statuses = statuses
        self.initialized = True
        logger.info(f"📋 Previous status map initialized from {source}: {len(statuses)} bookings")
        return True


def classify_changes(
    records: list[BookingRecord], previous: dict[str, str], changed_at: datetime
) -> tuple[list[BookingRecord], list[StatusChange]]:
    """
    Unknown id -> new booking; known id with a different status -> status change.
    `previous` is the snapshot as it was before this sync.
    """
    new_bookings: list[BookingRecord] = []
    status_changes: list[StatusChange] = []
    seen: set[str] = set()

    for record in records:
        if record.external_id in seen:
            continue
        seen.add(record.external_id)

        previous_status = previous.get(record.external_id)
        if previous_status is None:
            new_bookings.append(record)
        elif previous_status != record.status:
            status_changes.append(
                StatusChange(
                    external_id=record.external_id,
                    previous_status=previous_status,
                    new_status=record.status,
                    applicant_name=record.applicant_name,
                    facility_name=record.facility_name,
                    rental_date=record.rental_date,
                    time_slots=record.time_slots,
                    changed_at=changed_at,
                )
            )

    return new_bookings, status_changes


def booking_row_fields(record: BookingRecord) -> dict:
    """Column values for a new bookings row; detail fields are used when fetched"""

    def detail(name: str, default=None):
        return getattr(record, name, default) or default

    purpose = detail("purpose")
    return {
        "sto_reqst_sn": record.external_id,
        "studio_id": studio_id_for(record.facility_name),
        "rental_date": record.rental_date,
        "time_slots": list(record.time_slots),
        "applicant_name": detail("full_name") or record.applicant_name,
        "organization": record.organization or None,
        "phone": detail("full_phone") or record.phone or None,
        "email": detail("email"),
        "event_name": purpose,
        "purpose": purpose,
        "participants_count": record.participants_count,
        "payment_confirmed": record.status == "CONFIRMED",
        "status": record.status,
        # 0 is a valid fee
        "fee": getattr(record, "rental_fee", None),
        "special_note": record.special_note or None,
        "user_type": detail("user_type"),
        "discount_rate": getattr(record, "discount_rate", 0),
        "company_phone": detail("company_phone"),
        "business_license": detail("business_license"),
        "receipt_type": detail("receipt_type"),
        "business_number": detail("business_number"),
        "has_no_show": getattr(record, "has_no_show", False),
        "no_show_memo": detail("no_show_memo"),
        "studio_usage_method": detail("studio_usage_method"),
        "file_delivery_method": detail("file_delivery_method"),
        "pre_meeting_contact": detail("pre_meeting_contact"),
        "other_inquiry": detail("other_inquiry"),
    }


class SyncEngine:
    def __init__(
        self,
        scraper: BookingScraper,
        session_store: SessionStore,
        snapshot_store: SnapshotStore,
        session_factory: sessionmaker,
        lock: Optional[RedisSyncLock] = None,
        items_per_page: int = STO_ITEMS_PER_PAGE,
        detail_delay: float = STO_DETAIL_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.scraper = scraper
        self.session_store = session_store
        self.snapshot_store = snapshot_store
        self._session_factory = session_factory
        self.lock = lock
        self.items_per_page = items_per_page
        self.detail_delay = detail_delay
        self._sleep = sleep
        self._clock = clock

        self._in_progress = False
        self._last_sync_time: Optional[datetime] = None

    @property
    def is_syncing(self) -> bool:
        return self._in_progress

    @property
    def last_sync_time(self) -> Optional[datetime]:
        """This process's last successful sync, else the one recorded in the database"""
        return self._last_sync_time or self.session_store.last_sync_time()

    def initialize_previous_status_map(self) -> bool:
        return self.snapshot_store.initialize_previous_status_map()

    def _rejected(self) -> SyncResult:
        logger.info("⏭️ Sync already in progress, skipping")
        return SyncResult(
            success=False,
            errors=["A sync is already in progress."],
            synced_at=self._clock(),
            error_code=ALREADY_SYNCING,
        )

    async def sync(self, max_records: int = SYNC_MAX_RECORDS, fetch_detail: bool = True) -> SyncResult:
        # Checked and set with no await in between, so concurrent callers cannot both pass
        if self._in_progress:
            return self._rejected()
        self._in_progress = True

        try:
            if self.lock is not None and not await asyncio.to_thread(self.lock.acquire):
                return self._rejected()
            try:
                return await self._run(max_records, fetch_detail)
            finally:
                if self.lock is not None:
                    await asyncio.to_thread(self.lock.release)
        finally:
            self._in_progress = False

    async def _enrich(self, records: list[BookingRecord], errors: list[str]) -> list[BookingRecord]:
        """Swap list rows for detail records; a failed detail keeps the list row"""
        enriched = []
        for index, record in enumerate(records):
            if index and self.detail_delay:
                await self._sleep(self.detail_delay)

            result = await self.scraper.fetch_booking_detail(record.external_id, record)
            if result.success:
                enriched.append(result.detail)
            else:
                errors.append(f"Booking {record.external_id} detail failed: {result.error}")
                enriched.append(record)
        return enriched

    async def _run(self, max_records: int, fetch_detail: bool) -> SyncResult:
        started_at = self._clock()
        max_records = max(max_records, 1)
        max_pages = max(1, math.ceil(max_records / self.items_per_page))
        logger.info(f"🔄 STO sync started (max {max_records} records, {max_pages} pages)")

        list_result = await self.scraper.fetch_all_bookings(max_pages)
        if not list_result.success:
            # Snapshot untouched: a failed scrape must not advance the baseline
            return SyncResult(
                success=False,
                errors=[list_result.error or "Failed to fetch booking list"],
                synced_at=started_at,
                error_code=list_result.error_code,
            )

        errors: list[str] = []
        records = list_result.bookings[:max_records]
        if fetch_detail:
            records = await self._enrich(records, errors)

        synced_at = self._clock()
        new_bookings, status_changes = classify_changes(records, self.snapshot_store.get(), synced_at)
        # Database and Redis calls block, so they run off the event loop
        await asyncio.to_thread(
            self.snapshot_store.update, {record.external_id: record.status for record in records}
        )

        errors.extend(await asyncio.to_thread(self._persist_bookings, new_bookings, status_changes))

        self._last_sync_time = synced_at
        await asyncio.to_thread(self.session_store.record_sync, synced_at)

        logger.info(
            f"✅ STO sync complete: {len(records)} scraped, {len(new_bookings)} new, "
            f"{len(status_changes)} status changes, {len(errors)} errors"
        )
        return SyncResult(
            success=True,
            total_count=list_result.total_count,
            new_bookings=new_bookings,
            status_changes=status_changes,
            errors=errors,
            synced_at=synced_at,
        )

    def _persist_bookings(
        self, new_bookings: list[BookingRecord], status_changes: list[StatusChange]
    ) -> list[str]:
        """Write new bookings and status changes; each failure becomes one error line"""
        errors = []
        db = self._session_factory()
        try:
            for record in new_bookings:
                try:
                    if StoRepository.get_booking_by_reqst_sn(db, record.external_id) is not None:
                        # Row exists but the snapshot was lost; just align the status
                        StoRepository.update_booking_status(db, record.external_id, record.status)
                    else:
                        StoRepository.insert_booking(db, **booking_row_fields(record))
                except Exception as e:
                    db.rollback()
                    logger.error(f"❌ Failed to save booking {record.external_id}: {e}")
                    errors.append(f"Booking {record.external_id} save failed: {e}")

            for change in status_changes:
                try:
                    if not StoRepository.update_booking_status(db, change.external_id, change.new_status):
                        logger.warning(f"⚠️ Status change for unknown booking {change.external_id}")
                except Exception as e:
                    db.rollback()
                    logger.error(f"❌ Failed to update booking {change.external_id}: {e}")
                    errors.append(f"Booking {change.external_id} status update failed: {e}")
        finally:
            db.close()
        return errors
