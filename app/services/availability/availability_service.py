# ===== app/services/availability/availability_service.py =====
from typing import List, Dict, Optional
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
from uuid import UUID

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.core.exceptions import NotFound, ValidationError
from app.models.appointment import Appointment, AppointmentStatus
from app.models.business import Business, BusinessHours
from app.models.scheduling_policy import SchedulingPolicy
from app.models.service import Service
from app.models.staff import StaffMember
from app.models.time_block import TimeBlock
from app.services.availability.slot_engine import (
    blocks_for_day,
    compute_available_slots,
    is_day_blocked,
    parse_hhmm,
    slot_end_time,
)
import logging

logger = logging.getLogger(__name__)
settings = get_settings()


def business_now(business: Business) -> datetime:
    """Current wall-clock time in the business timezone, naive"""
    tz = ZoneInfo(business.timezone or settings.DEFAULT_TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None)


class AvailabilityService:
    """Loads the rules for a business and runs the slot engine over them"""

    @staticmethod
    def get_policy(db: Session, business_id: UUID) -> SchedulingPolicy:
        policy = db.query(SchedulingPolicy).filter_by(business_id=business_id).first()
        return policy or SchedulingPolicy.defaults(business_id)

    @staticmethod
    def get_hours(db: Session, business_id: UUID) -> Dict[int, BusinessHours]:
        rows = db.query(BusinessHours).filter_by(business_id=business_id).all()
        return {row.day_of_week: row for row in rows}

    @staticmethod
    def get_bookable_service(db: Session, business_id: UUID, service_id: UUID) -> Service:
        service = db.query(Service).filter(
            Service.id == service_id,
            Service.business_id == business_id,
        ).first()
        if not service:
            raise NotFound("Service not found", service_id=str(service_id))
        if not service.is_active:
            raise ValidationError("Service is not active", service_id=str(service_id))
        if not service.duration or service.duration <= 0:
            raise ValidationError("Service has no valid duration", service_id=str(service_id))
        return service

    @staticmethod
    def get_staff(db: Session, business_id: UUID, staff_id: Optional[UUID]) -> Optional[StaffMember]:
        if staff_id is None:
            return None
        staff = db.query(StaffMember).filter(
            StaffMember.id == staff_id,
            StaffMember.business_id == business_id,
        ).first()
        if not staff or not staff.is_active:
            raise ValidationError("Staff member not available", staff_id=str(staff_id))
        return staff

    @staticmethod
    def get_day_appointments(
            db: Session,
            business_id: UUID,
            day: date,
            exclude_id: Optional[UUID] = None,
    ) -> List[Appointment]:
        """Appointments that hold a place in the agenda on `day`"""
        query = db.query(Appointment).filter(
            Appointment.business_id == business_id,
            Appointment.appointment_date == day,
            Appointment.status != AppointmentStatus.CANCELED,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.all()

    @staticmethod
    def get_blocks(db: Session, business_id: UUID, start: date, end: date) -> List[TimeBlock]:
        return db.query(TimeBlock).filter(
            TimeBlock.business_id == business_id,
            TimeBlock.block_date.between(start, end),
        ).all()

    @staticmethod
    def get_available_slots(
            db: Session,
            business: Business,
            service: Service,
            requested_date: date,
            staff_id: Optional[UUID] = None,
            now: Optional[datetime] = None,
    ) -> List[str]:
        """Bookable start times for one service on one day"""
        now = now or business_now(business)
        hours = AvailabilityService.get_hours(db, business.id).get(requested_date.weekday())
        if hours is None or not hours.is_open:
            return []

        slots = compute_available_slots(
            hours=hours,
            policy=AvailabilityService.get_policy(db, business.id),
            duration_minutes=service.duration,
            appointments=AvailabilityService.get_day_appointments(db, business.id, requested_date),
            requested_date=requested_date,
            now=now,
            blocks=AvailabilityService.get_blocks(db, business.id, requested_date, requested_date),
            staff_id=staff_id,
        )
        logger.debug(f"{len(slots)} slots for business {business.id} on {requested_date}")
        return slots

    @staticmethod
    def get_available_dates(
            db: Session,
            business: Business,
            staff_id: Optional[UUID] = None,
            days: Optional[int] = None,
            today: Optional[date] = None,
    ) -> List[str]:
        """Open, not fully blocked dates in the next `days` days (today included)"""
        days = days or settings.AVAILABLE_DATES_WINDOW_DAYS
        today = today or business_now(business).date()
        last = today + timedelta(days=days - 1)

        hours = AvailabilityService.get_hours(db, business.id)
        blocks = AvailabilityService.get_blocks(db, business.id, today, last)

        dates = []
        for offset in range(days):
            day = today + timedelta(days=offset)
            rule = hours.get(day.weekday())
            if rule is None or not rule.is_open:
                continue
            if is_day_blocked(blocks_for_day(blocks, day, staff_id), staff_id):
                continue
            dates.append(day.isoformat())
        return dates

    @staticmethod
    def find_next_available_slot(
            db: Session,
            business: Business,
            service: Service,
            after_date: date,
            staff_id: Optional[UUID] = None,
            search_days: int = 30,
            now: Optional[datetime] = None,
    ) -> Optional[Dict]:
        """
        First free slot on the days following `after_date`.
        Used to move appointments off a day that is being cleared.
        """
        now = now or business_now(business)
        for offset in range(1, search_days + 1):
            day = after_date + timedelta(days=offset)
            slots = AvailabilityService.get_available_slots(
                db, business, service, day, staff_id=staff_id, now=now
            )
            if slots:
                start = parse_hhmm(slots[0])
                return {
                    "date": day,
                    "start_time": start,
                    "end_time": slot_end_time(start, service.duration),
                }
        return None
