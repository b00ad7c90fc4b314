# ============================================================================
# app/services/appointment/booking_service.py
# ============================================================================
"""
Appointment write path.

Availability is computed from a snapshot, so two clients can see the same
free slot. Creation therefore re-checks the slot while holding the booking
lock for (business, date) and a row lock on the business, and only then
inserts.
"""
import logging
from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import NotFound, SlotUnavailable, ValidationError
from app.models.appointment import Appointment, AppointmentStatus, BookingSource
from app.models.business import Business
from app.services.availability.availability_service import AvailabilityService, business_now
from app.services.availability.slot_engine import (
    blocks_for_day,
    busy_intervals,
    closing_minutes,
    compute_available_slots,
    count_overlapping,
    format_hhmm,
    is_day_blocked,
    overlaps,
    slot_end_time,
    to_minutes,
)
from app.utils.keyed_lock import get_keyed_lock

logger = logging.getLogger(__name__)


def normalize_phone(phone: str) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit() or ch == "+")


class AppointmentBookingService:
    """Creates appointments without ever exceeding slot capacity"""

    def __init__(self, db: Session, calendar_sync=None, lock=None):
        self.db = db
        self.lock = lock or get_keyed_lock()
        if calendar_sync is None:
            from app.services.calendar.calendar_sync_service import CalendarSyncService

            calendar_sync = CalendarSyncService(db)
        self.calendar_sync = calendar_sync

    def create_appointment(
            self,
            business_id: UUID,
            service_id: UUID,
            client_name: str,
            client_phone: str,
            appointment_date: date,
            start_time: time,
            staff_id: Optional[UUID] = None,
            notes: Optional[str] = None,
            source: str = BookingSource.PUBLIC,
            status: Optional[str] = None,
            replaces_id: Optional[UUID] = None,
            now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Book a slot.

        Public bookings must match a slot the availability engine offers
        (grid, advance notice, hours, blocks, capacity). Staff bookings and
        reschedules skip the grid and advance notice but still have to fit in
        the opening hours and respect capacity.

        Raises:
            ValidationError: bad client data, inactive service or staff
            SlotUnavailable: slot is closed, blocked or full
        """
        client_name = (client_name or "").strip()
        client_phone = normalize_phone(client_phone)
        if not client_name:
            raise ValidationError("Client name is required")
        if len(client_phone.lstrip("+")) < 8:
            raise ValidationError("Client phone is invalid")

        business = self.db.query(Business).filter(Business.id == business_id).first()
        if not business or not business.is_active:
            raise NotFound("Business not found", business_id=str(business_id))

        service = AvailabilityService.get_bookable_service(self.db, business_id, service_id)
        AvailabilityService.get_staff(self.db, business_id, staff_id)

        end_time = slot_end_time(start_time, service.duration)
        if end_time is None:
            raise SlotUnavailable("Appointment would run past midnight")

        if status is None:
            status = AppointmentStatus.PENDING if source == BookingSource.PUBLIC else AppointmentStatus.CONFIRMED
        if status not in AppointmentStatus.ACTIVE:
            raise ValidationError(f"New appointments cannot start as '{status}'")

        lock_key = f"lock:booking:{business_id}:{appointment_date.isoformat()}"
        with self.lock.acquire(lock_key):
            try:
                # Serializes writers across processes on the same business
                self.db.query(Business).filter(Business.id == business_id).with_for_update().one()

                self._check_slot(
                    business=business,
                    service=service,
                    appointment_date=appointment_date,
                    start_time=start_time,
                    end_time=end_time,
                    staff_id=staff_id,
                    enforce_public_rules=source == BookingSource.PUBLIC,
                    replaces_id=replaces_id,
                    now=now or business_now(business),
                )

                appointment = Appointment(
                    business_id=business_id,
                    service_id=service.id,
                    staff_id=staff_id,
                    client_name=client_name,
                    client_phone=client_phone,
                    appointment_date=appointment_date,
                    start_time=start_time,
                    end_time=end_time,
                    notes=(notes or "").strip() or None,
                    status=status,
                    booking_source=source,
                )
                self.db.add(appointment)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            f"Created appointment {appointment.id} for business {business_id} on "
            f"{appointment_date} {format_hhmm(to_minutes(start_time))} ({source}, {status})"
        )

        # Mirror into the external calendar; failures there never undo the booking
        self.calendar_sync.schedule_sync(appointment)
        return appointment

    def _check_slot(
            self,
            business: Business,
            service,
            appointment_date: date,
            start_time: time,
            end_time: time,
            staff_id: Optional[UUID],
            enforce_public_rules: bool,
            replaces_id: Optional[UUID],
            now: datetime,
    ) -> None:
        db = self.db
        hours = AvailabilityService.get_hours(db, business.id).get(appointment_date.weekday())
        policy = AvailabilityService.get_policy(db, business.id)
        appointments = AvailabilityService.get_day_appointments(
            db, business.id, appointment_date, exclude_id=replaces_id
        )
        blocks = AvailabilityService.get_blocks(db, business.id, appointment_date, appointment_date)

        if hours is None or not hours.is_open:
            raise SlotUnavailable("Business is closed on this day")

        if enforce_public_rules:
            slots = compute_available_slots(
                hours=hours,
                policy=policy,
                duration_minutes=service.duration,
                appointments=appointments,
                requested_date=appointment_date,
                now=now,
                blocks=blocks,
                staff_id=staff_id,
            )
            if format_hhmm(to_minutes(start_time)) not in slots:
                raise SlotUnavailable(
                    "This time is no longer available",
                    date=appointment_date.isoformat(),
                    time=format_hhmm(to_minutes(start_time)),
                )
            return

        start, end = to_minutes(start_time), to_minutes(end_time)
        if start < to_minutes(hours.open_time) or end > closing_minutes(hours.close_time):
            raise SlotUnavailable("Appointment is outside business hours")

        day_blocks = blocks_for_day(blocks, appointment_date, staff_id)
        if is_day_blocked(day_blocks, staff_id):
            raise SlotUnavailable("This day is blocked")
        for block in day_blocks:
            if block.start_time is not None and block.end_time is not None \
                    and overlaps(start, end, to_minutes(block.start_time), to_minutes(block.end_time)):
                raise SlotUnavailable("This time is blocked")

        if count_overlapping(busy_intervals(appointments), start, end) >= policy.max_capacity_per_slot:
            raise SlotUnavailable("This time is fully booked")
