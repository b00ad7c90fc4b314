# app/api/v1/dashboard/calendar.py
import logging
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.dependencies import TenantContext, get_current_tenant
from app.config.database import get_db
from app.config.settings import settings
from app.core.exceptions import SchedulingError
from app.schemas.calendar import (
    AuthorizationUrlResponse,
    CalendarConnectionStatus,
    SelectCalendarRequest,
    SyncModeRequest,
)
from app.services.availability.availability_service import AvailabilityService
from app.services.calendar.calendar_sync_service import CalendarSyncService
from app.services.calendar.google_calendar_service import GoogleCalendarService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar"])
callback_router = APIRouter(tags=["calendar"])


def resolve_staff(tenant: TenantContext, staff_id: Optional[UUID]) -> Optional[UUID]:
    """Staff logins only manage their own connection; owners may pick any staff member"""
    if tenant.staff_id is not None:
        if staff_id is not None and staff_id != tenant.staff_id:
            raise HTTPException(status_code=403, detail="Cannot manage another staff member's calendar")
        return tenant.staff_id
    return staff_id


# ========== GOOGLE CALENDAR ==========
@router.post("/google/authorize", response_model=AuthorizationUrlResponse)
def initiate_google_auth(
        staff_id: Optional[UUID] = Query(None, description="Connect a staff member's own calendar"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Returns authorization URL for the business owner (or staff member) to visit"""
    staff_id = resolve_staff(tenant, staff_id)
    AvailabilityService.get_staff(db, tenant.business_id, staff_id)
    return {"authorization_url": GoogleCalendarService().generate_authorization_url(tenant.business_id, staff_id)}


@callback_router.get("/calendar/google/callback")
def google_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        db: Session = Depends(get_db)
):
    """Google redirects here after authorization; the user is sent back to the dashboard"""
    target = f"{settings.FRONTEND_URL.rstrip('/')}/settings/calendar"

    if error or not code or not state:
        logger.warning(f"Google authorization denied or incomplete: {error}")
        return RedirectResponse(f"{target}?{urlencode({'status': 'error', 'reason': error or 'missing_code'})}")

    try:
        token = GoogleCalendarService().handle_oauth_callback(db, code=code, state=state)
    except SchedulingError as e:
        logger.error(f"Google calendar connection failed: {e.message}")
        return RedirectResponse(f"{target}?{urlencode({'status': 'error', 'reason': e.error_code})}")

    return RedirectResponse(f"{target}?{urlencode({'status': 'connected', 'calendar': token.connected_email or ''})}")


@router.get("/google/status", response_model=CalendarConnectionStatus)
def google_status(
        staff_id: Optional[UUID] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    return GoogleCalendarService().connection_status(db, tenant.business_id, resolve_staff(tenant, staff_id))


@router.get("/google/calendars")
def list_google_calendars(
        staff_id: Optional[UUID] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Fresh calendar list from Google"""
    calendars = GoogleCalendarService().list_calendars(db, tenant.business_id, resolve_staff(tenant, staff_id))
    return {"calendars": calendars}


@router.put("/google/calendar")
def select_google_calendar(
        payload: SelectCalendarRequest,
        staff_id: Optional[UUID] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Let business choose which Google calendar receives appointments"""
    token = GoogleCalendarService().select_calendar(
        db, tenant.business_id, payload.calendar_id, resolve_staff(tenant, staff_id)
    )
    return {"success": True, "calendar_id": token.calendar_id}


@router.delete("/google")
def disconnect_google(
        staff_id: Optional[UUID] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    removed = GoogleCalendarService().disconnect(db, tenant.business_id, resolve_staff(tenant, staff_id))
    if not removed:
        raise HTTPException(status_code=404, detail="Google Calendar is not connected")
    return {"success": True}


@router.put("/sync-mode")
def update_sync_mode(
        payload: SyncModeRequest,
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Choose between one company calendar and per-staff calendars"""
    if tenant.staff_id is not None:
        raise HTTPException(status_code=403, detail="Only the business owner can change the sync mode")
    policy = CalendarSyncService(db).set_sync_mode(
        tenant.business_id, payload.calendar_sync_mode, payload.generate_meet_link
    )
    return policy.to_dict()
