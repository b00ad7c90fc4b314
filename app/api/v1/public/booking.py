# ============================================================================
# app/api/v1/public/booking.py
# Public booking page endpoints - no authentication, business resolved by slug
# ============================================================================
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_public_business
from app.config.database import get_db
from app.models.business import Business
from app.models.service import Service
from app.models.appointment import BookingSource
from app.schemas.scheduling import (
    AppointmentResponse,
    AvailabilityResponse,
    AvailableDatesResponse,
    PublicBookingRequest,
)
from app.services.appointment.booking_service import AppointmentBookingService
from app.services.availability.availability_service import AvailabilityService

router = APIRouter(prefix="/public/{slug}", tags=["Public"])


@router.get("/services")
def list_services(
        business: Business = Depends(get_public_business),
        db: Session = Depends(get_db)
):
    """Active services offered on the booking page"""
    services = db.query(Service).filter(
        Service.business_id == business.id,
        Service.is_active == True  # noqa: E712
    ).order_by(Service.display_order, Service.name).all()
    return {"business": business.name, "services": [s.to_dict() for s in services]}


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(
        service_id: UUID = Query(..., description="Service being booked"),
        date: date = Query(..., description="Day to check (YYYY-MM-DD)"),
        staff_id: Optional[UUID] = Query(None, description="Preferred staff member"),
        business: Business = Depends(get_public_business),
        db: Session = Depends(get_db)
):
    """Bookable start times for one service on one day"""
    service = AvailabilityService.get_bookable_service(db, business.id, service_id)
    slots = AvailabilityService.get_available_slots(db, business, service, date, staff_id=staff_id)
    return AvailabilityResponse(date=date, service_id=service.id, staff_id=staff_id, slots=slots)


@router.get("/available-dates", response_model=AvailableDatesResponse)
def get_available_dates(
        days: int = Query(30, ge=1, le=90, description="How many days ahead to look"),
        staff_id: Optional[UUID] = Query(None),
        business: Business = Depends(get_public_business),
        db: Session = Depends(get_db)
):
    """Days the business is open and not blocked"""
    dates = AvailabilityService.get_available_dates(db, business, staff_id=staff_id, days=days)
    return AvailableDatesResponse(dates=dates)


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
def create_appointment(
        payload: PublicBookingRequest,
        business: Business = Depends(get_public_business),
        db: Session = Depends(get_db)
):
    """
    Book an appointment. Answers 409 when the slot was taken in the meantime.
    New public bookings start as pending.
    """
    appointment = AppointmentBookingService(db).create_appointment(
        business_id=business.id,
        service_id=payload.service_id,
        staff_id=payload.staff_id,
        client_name=payload.client_name,
        client_phone=payload.client_phone,
        appointment_date=payload.appointment_date,
        start_time=payload.start_time,
        notes=payload.notes,
        source=BookingSource.PUBLIC,
    )
    return appointment.to_dict()
