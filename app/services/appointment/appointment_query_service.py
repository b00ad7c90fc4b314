# ============================================================================
# FILE: app/services/appointment/appointment_query_service.py
# Read side of the agenda - no FastAPI dependencies, fully testable
# ============================================================================
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import date
from typing import Optional, Dict, Any
from uuid import UUID

from app.core.exceptions import NotFound
from app.models.appointment import Appointment


class AppointmentQueryService:
    """Service layer for listing and reading appointments."""

    @staticmethod
    def list_appointments(
            db: Session,
            business_id: UUID,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None,
            status: Optional[str] = None,
            client_phone: Optional[str] = None,
            staff_id: Optional[UUID] = None,
            skip: int = 0,
            limit: int = 50
    ) -> Dict[str, Any]:
        """Get paginated list of appointments with filters."""
        query = db.query(Appointment).filter(Appointment.business_id == business_id)

        if start_date:
            query = query.filter(Appointment.appointment_date >= start_date)
        if end_date:
            query = query.filter(Appointment.appointment_date <= end_date)
        if status:
            query = query.filter(Appointment.status == status)
        if client_phone:
            query = query.filter(Appointment.client_phone == client_phone)
        if staff_id:
            query = query.filter(Appointment.staff_id == staff_id)

        total = query.count()
        appointments = query.order_by(
            Appointment.appointment_date.asc(), Appointment.start_time.asc()
        ).offset(skip).limit(limit).all()

        return {
            "appointments": [appt.to_dict() for appt in appointments],
            "total": total,
            "skip": skip,
            "limit": limit,
        }

    @staticmethod
    def get_appointment(db: Session, business_id: UUID, appointment_id: UUID) -> Appointment:
        """Get a single appointment of the business or raise NotFound."""
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.business_id == business_id
        ).first()

        if not appointment:
            raise NotFound("Appointment not found", appointment_id=str(appointment_id))
        return appointment

    @staticmethod
    def get_status_counts(
            db: Session,
            business_id: UUID,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None
    ) -> Dict[str, int]:
        """Appointments per status in the period."""
        query = db.query(Appointment.status, func.count(Appointment.id)).filter(
            Appointment.business_id == business_id
        )
        if start_date:
            query = query.filter(Appointment.appointment_date >= start_date)
        if end_date:
            query = query.filter(Appointment.appointment_date <= end_date)
        return {status: count for status, count in query.group_by(Appointment.status).all()}
