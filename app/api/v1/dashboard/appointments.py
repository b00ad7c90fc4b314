# ============================================================================
# app/api/v1/dashboard/appointments.py
# JWT authenticated endpoints - thin HTTP layer
# ============================================================================
from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional
from uuid import UUID

from app.api.dependencies import TenantContext, get_current_tenant
from app.config.database import get_db
from app.models.appointment import BookingSource
from app.schemas.calendar import SyncResultResponse
from app.schemas.scheduling import (
    AppointmentListResponse,
    AppointmentResponse,
    MassCancelRequest,
    MassCancelResponse,
    RescheduleRequest,
    StaffBookingRequest,
    StatusChangeRequest,
)
from app.services.appointment.appointment_query_service import AppointmentQueryService
from app.services.appointment.booking_service import AppointmentBookingService
from app.services.appointment.lifecycle_service import AppointmentLifecycleService
from app.services.calendar.calendar_sync_service import CalendarSyncService

router = APIRouter(prefix="/appointments", tags=["dashboard-appointments"])


@router.get("", response_model=AppointmentListResponse)
def list_appointments(
        start_date: Optional[date] = Query(None, description="Appointments on or after this date"),
        end_date: Optional[date] = Query(None, description="Appointments on or before this date"),
        status: Optional[str] = Query(None, description="pending, confirmed, completed, canceled, no_show, rescheduled"),
        client_phone: Optional[str] = Query(None, description="Filter by client phone number"),
        staff_id: Optional[UUID] = Query(None, description="Filter by staff member"),
        skip: int = Query(0, ge=0, description="Number of records to skip"),
        limit: int = Query(50, ge=1, le=200, description="Number of records to return"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """List the business agenda."""
    return AppointmentQueryService.list_appointments(
        db=db,
        business_id=tenant.business_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        client_phone=client_phone,
        staff_id=staff_id,
        skip=skip,
        limit=limit
    )


@router.get("/stats")
def appointment_stats(
        start_date: Optional[date] = Query(None),
        end_date: Optional[date] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Appointment counts per status."""
    return {
        "by_status": AppointmentQueryService.get_status_counts(db, tenant.business_id, start_date, end_date)
    }


@router.post("/mass-cancel", response_model=MassCancelResponse)
def mass_cancel(
        payload: MassCancelRequest,
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """
    Clear a whole day. With reschedule=true confirmed appointments are moved
    to the next free slot instead of being canceled.
    """
    return AppointmentLifecycleService(db).mass_cancel(
        business_id=tenant.business_id,
        day=payload.date,
        reason=payload.reason,
        reschedule=payload.reschedule,
    )


@router.post("", response_model=AppointmentResponse, status_code=201)
def create_appointment(
        payload: StaffBookingRequest,
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Book on behalf of a client. Staff bookings start confirmed."""
    appointment = AppointmentBookingService(db).create_appointment(
        business_id=tenant.business_id,
        service_id=payload.service_id,
        staff_id=payload.staff_id,
        client_name=payload.client_name,
        client_phone=payload.client_phone,
        appointment_date=payload.appointment_date,
        start_time=payload.start_time,
        notes=payload.notes,
        source=BookingSource.STAFF,
    )
    return appointment.to_dict()


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Get one appointment."""
    return AppointmentQueryService.get_appointment(db, tenant.business_id, appointment_id).to_dict()


@router.post("/{appointment_id}/status", response_model=AppointmentResponse)
def change_status(
        payload: StatusChangeRequest,
        appointment_id: UUID = Path(..., description="The appointment ID"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Move an appointment through its lifecycle. 409 when the change is not allowed."""
    appointment = AppointmentLifecycleService(db).transition(
        appointment_id=appointment_id,
        new_status=payload.status,
        reason=payload.reason,
        business_id=tenant.business_id,
    )
    return appointment.to_dict()


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse, status_code=201)
def reschedule_appointment(
        payload: RescheduleRequest,
        appointment_id: UUID = Path(..., description="The appointment ID"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Move a confirmed appointment; returns the replacement."""
    replacement = AppointmentLifecycleService(db).reschedule(
        appointment_id=appointment_id,
        new_date=payload.new_date,
        new_time=payload.new_time,
        reason=payload.reason,
        business_id=tenant.business_id,
    )
    return replacement.to_dict()


@router.post("/{appointment_id}/sync", response_model=SyncResultResponse)
def sync_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Retry the calendar sync now instead of waiting for the worker."""
    AppointmentQueryService.get_appointment(db, tenant.business_id, appointment_id)
    return CalendarSyncService(db).sync_appointment(appointment_id).to_dict()
