"""STO router - FastAPI endpoints for portal login, scraping and sync"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ...config import (
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    CRON_SECRET,
    STO_EMAIL,
    STO_PASSWORD,
    SYNC_INTERVAL_MINUTES,
    SYNC_MAX_RECORDS,
)
from .errors import (
    ALREADY_SYNCING,
    AUTH_FAILED,
    AUTH_REQUIRED,
    INVALID_CODE,
    NETWORK_ERROR,
    PARSE_ERROR,
    VERIFICATION_TIMEOUT,
    StoError,
)
from .repository import utc_now
from .schemas import (
    LoginRequest,
    LoginResponse,
    LoginStatusResponse,
    SyncRequest,
    SyncResult,
    SyncStatusResponse,
)
from .scraper import LOGIN_REQUIRED_MESSAGE
from .service import StoServices
from .status import compute_display_status, is_business_hours

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sto", tags=["STO"])

ERROR_STATUS_CODES = {
    AUTH_REQUIRED: 401,
    AUTH_FAILED: 401,
    INVALID_CODE: 401,
    VERIFICATION_TIMEOUT: 401,
    ALREADY_SYNCING: 409,
    NETWORK_ERROR: 502,
    PARSE_ERROR: 502,
}


def get_sto_services(request: Request) -> StoServices:
    """Dependency injection for the process-wide STO services"""
    return request.app.state.sto


def _json(model: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(mode="json", by_alias=True))


def _error(code: Optional[str], message: Optional[str], default_status: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(code, default_status),
        content={"success": False, "error": message or code, "errorCode": code},
    )


def _login_required() -> JSONResponse:
    return _error(AUTH_REQUIRED, LOGIN_REQUIRED_MESSAGE)


def _schedule_notifications(background_tasks: BackgroundTasks, services: StoServices, result: SyncResult) -> None:
    if result.new_bookings or result.status_changes:
        background_tasks.add_task(services.dispatcher.dispatch, result.new_bookings, result.status_changes)


# ============================================================================
# LOGIN
# ============================================================================


@router.post("/login")
async def login(
    data: LoginRequest,
    services: StoServices = Depends(get_sto_services),
):
    """Credential login; the second call carries the emailed code, or autoLogin reads it from Gmail"""
    email = data.email.strip() or (STO_EMAIL if data.auto_login else "")
    password = data.password or (STO_PASSWORD if data.auto_login else "")
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    try:
        if data.auto_login:
            result = await services.auth_flow.auto_login(email, password)
        else:
            result = await services.auth_flow.login(email, password, data.verification_code)
    except Exception as e:
        logger.error(f"❌ STO login crashed: {e}")
        raise HTTPException(status_code=500, detail="STO login failed") from e

    if result.success:
        return _json(
            LoginResponse(success=True, message="STO login successful", expires_at=result.expires_at)
        )
    if result.needs_verification:
        return _json(
            LoginResponse(
                success=False,
                needs_verification=True,
                message=result.error,
                error_code=result.error_code,
            )
        )
    return _json(
        LoginResponse(success=False, error=result.error, error_code=result.error_code),
        ERROR_STATUS_CODES.get(result.error_code, 500),
    )


@router.get("/login")
async def login_status(services: StoServices = Depends(get_sto_services)):
    services.session_store.restore()
    session = services.session_store.get_current_session()
    is_valid = services.session_store.is_session_valid()
    return _json(LoginStatusResponse(is_valid=is_valid, expires_at=session.expires_at if is_valid else None))


@router.delete("/login")
async def logout(services: StoServices = Depends(get_sto_services)):
    services.auth_flow.logout()
    return {"success": True, "message": "Logged out of STO"}


# ============================================================================
# BOOKINGS
# ============================================================================


@router.get("/bookings")
async def get_bookings(
    max_pages: int = Query(1, alias="maxPages", ge=1, le=50),
    services: StoServices = Depends(get_sto_services),
):
    """Scrape the reservation list; computedStatus adds the wall-clock IN_USE/DONE view"""
    if not services.session_store.restore():
        return _login_required()

    result = await services.scraper.fetch_all_bookings(max_pages)
    if not result.success:
        return _error(result.error_code, result.error)

    now = utc_now()
    bookings = []
    for booking in result.bookings:
        item = booking.model_dump(mode="json", by_alias=True)
        item["computedStatus"] = compute_display_status(
            booking.status, booking.rental_date, booking.time_slots, now
        )
        bookings.append(item)

    return {"success": True, "totalCount": result.total_count, "bookings": bookings}


@router.get("/bookings/{reqst_sn}")
async def get_booking_detail(
    reqst_sn: str,
    services: StoServices = Depends(get_sto_services),
):
    if not services.session_store.restore():
        return _login_required()

    result = await services.scraper.fetch_booking_detail(reqst_sn)
    if not result.success:
        return _error(result.error_code, result.error)
    return _json(result)


# ============================================================================
# SYNC
# ============================================================================


@router.post("/sync")
async def run_sync(
    background_tasks: BackgroundTasks,
    data: Optional[SyncRequest] = Body(None),
    services: StoServices = Depends(get_sto_services),
):
    """Full sync; notifications go out after the response"""
    data = data or SyncRequest()
    services.session_store.restore()

    try:
        result = await services.sync_engine.sync(
            max_records=data.max_records or SYNC_MAX_RECORDS,
            fetch_detail=data.fetch_detail,
        )
    except Exception as e:
        logger.error(f"❌ STO sync crashed: {e}")
        raise HTTPException(status_code=500, detail="STO sync failed") from e

    if not result.success:
        return _json(result, ERROR_STATUS_CODES.get(result.error_code, 500))

    _schedule_notifications(background_tasks, services, result)
    return _json(result)


@router.get("/sync")
async def sync_status(services: StoServices = Depends(get_sto_services)):
    return _json(
        SyncStatusResponse(
            last_sync_time=services.sync_engine.last_sync_time,
            is_syncing=services.sync_engine.is_syncing,
            is_logged_in=services.session_store.is_session_valid(),
        )
    )


@router.put("/sync")
async def reseed_snapshot(services: StoServices = Depends(get_sto_services)):
    """Reload the previous-status map from the database"""
    if not services.sync_engine.initialize_previous_status_map():
        raise HTTPException(status_code=500, detail="Failed to load previous status map")
    return {"success": True, "count": len(services.snapshot_store)}


# ============================================================================
# KEEP-ALIVE & CRON
# ============================================================================


@router.post("/keepalive")
async def keep_alive(services: StoServices = Depends(get_sto_services)):
    try:
        session = await services.keep_alive()
    except StoError as e:
        return _error(e.code, e.message)
    return {"success": True, "expiresAt": session.expires_at.isoformat()}


@router.get("/keepalive")
async def keep_alive_status(services: StoServices = Depends(get_sto_services)):
    session = services.session_store.get_current_session()
    is_valid = services.session_store.is_session_valid()
    stored = services.session_store.load_from_durable_store()
    return {
        "isValid": is_valid,
        "expiresAt": session.expires_at.isoformat() if is_valid else None,
        "hasStoredSession": stored is not None,
        "storedExpiresAt": stored.expires_at.isoformat() if stored else None,
        "isBusinessHours": is_business_hours(utc_now(), BUSINESS_HOURS_START, BUSINESS_HOURS_END),
    }


@router.api_route("/cron", methods=["GET", "POST"])
async def cron_sync(
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(None),
    services: StoServices = Depends(get_sto_services),
):
    """Scheduled sync: business hours only, at most once per SYNC_INTERVAL_MINUTES"""
    if CRON_SECRET and authorization != f"Bearer {CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    now = utc_now()
    if not is_business_hours(now, BUSINESS_HOURS_START, BUSINESS_HOURS_END):
        return {"success": True, "skipped": True, "reason": "Outside business hours"}

    last_sync = services.sync_engine.last_sync_time
    if last_sync and now - last_sync < timedelta(minutes=SYNC_INTERVAL_MINUTES):
        return {"success": True, "skipped": True, "reason": "Synced recently", "lastSyncTime": last_sync.isoformat()}

    if not services.session_store.restore():
        if not (STO_EMAIL and STO_PASSWORD):
            logger.warning("⚠️ Cron sync skipped: no valid STO session")
            return _login_required()

        logger.info("🔄 Cron sync: session expired, attempting automatic login")
        login_result = await services.auth_flow.auto_login(STO_EMAIL, STO_PASSWORD)
        if not login_result.success:
            return _error(login_result.error_code, login_result.error)

    result = await services.sync_engine.sync(max_records=SYNC_MAX_RECORDS, fetch_detail=True)
    if not result.success:
        return _json(result, ERROR_STATUS_CODES.get(result.error_code, 500))

    services.session_store.extend()
    _schedule_notifications(background_tasks, services, result)
    return _json(result)
