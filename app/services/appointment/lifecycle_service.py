# ============================================================================
# app/services/appointment/lifecycle_service.py
# ============================================================================
"""
Appointment status changes and their side effects.

A change is validated against ALLOWED_TRANSITIONS and persisted under the
per-appointment lock. Session bookkeeping for completed appointments lands in
the same transaction. Notifications and calendar cleanup run after commit and
never undo the status change.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import (
    InvalidTransition,
    LockTimeout,
    NotFound,
    ProviderError,
    SlotUnavailable,
    TokenRefreshFailed,
    ValidationError,
)
from app.models.appointment import Appointment, AppointmentStatus, BookingSource
from app.models.business import Business
from app.services.appointment.booking_service import AppointmentBookingService
from app.services.availability.availability_service import AvailabilityService
from app.services.sessions.session_package_service import SessionPackageService
from app.utils.keyed_lock import get_keyed_lock

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    },
}

NOTIFY_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED, AppointmentStatus.RESCHEDULED)
CALENDAR_CLEANUP_STATUSES = (AppointmentStatus.CANCELED, AppointmentStatus.RESCHEDULED)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, ())


class AppointmentLifecycleService:

    def __init__(self, db: Session, dispatcher=None, calendar_sync=None, lock=None):
        self.db = db
        self.lock = lock or get_keyed_lock()
        if dispatcher is None:
            from app.services.notification.notification_service import CeleryNotificationDispatcher

            dispatcher = CeleryNotificationDispatcher()
        if calendar_sync is None:
            from app.services.calendar.calendar_sync_service import CalendarSyncService

            calendar_sync = CalendarSyncService(db, lock=self.lock)
        self.dispatcher = dispatcher
        self.calendar_sync = calendar_sync

    def _load_for_update(self, appointment_id: UUID, business_id: Optional[UUID]) -> Appointment:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if business_id is not None:
            query = query.filter(Appointment.business_id == business_id)
        appointment = query.populate_existing().with_for_update().first()
        if appointment is None:
            raise NotFound("Appointment not found", appointment_id=str(appointment_id))
        return appointment

    def _apply(self, appointment: Appointment, new_status: str, reason: Optional[str]) -> None:
        """Validate and persist one status change; caller holds the appointment lock"""
        current = appointment.status
        if not can_transition(current, new_status):
            self.db.rollback()
            raise InvalidTransition(current, new_status)

        try:
            appointment.status = new_status
            if new_status == AppointmentStatus.CANCELED:
                appointment.cancelled_at = datetime.now(timezone.utc)
                appointment.cancellation_reason = reason
            if new_status == AppointmentStatus.COMPLETED:
                SessionPackageService(self.db).record_completion(appointment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Appointment {appointment.id}: {current} -> {new_status}")

    def transition(
            self,
            appointment_id: UUID,
            new_status: str,
            reason: Optional[str] = None,
            business_id: Optional[UUID] = None,
    ) -> Appointment:
        """
        Move an appointment to `new_status`.

        Raises:
            ValidationError: unknown status
            NotFound: appointment missing (or belongs to another business)
            InvalidTransition: change not allowed from the current status
        """
        if new_status not in AppointmentStatus.ALL:
            raise ValidationError(f"Unknown status '{new_status}'")

        with self.lock.acquire(f"lock:appointment:{appointment_id}"):
            appointment = self._load_for_update(appointment_id, business_id)
            self._apply(appointment, new_status, reason)

        self._after_transition(appointment, new_status)
        return appointment

    def _after_transition(self, appointment: Appointment, new_status: str, context: Optional[Dict] = None) -> None:
        if new_status in NOTIFY_STATUSES:
            try:
                self.dispatcher.dispatch(appointment.id, new_status, context)
            except Exception as e:
                logger.error(f"Failed to dispatch {new_status} notification for appointment {appointment.id}: {e}")

        if new_status in CALENDAR_CLEANUP_STATUSES and appointment.external_event_id:
            self.cleanup_calendar_event(appointment)

    def cleanup_calendar_event(self, appointment: Appointment) -> bool:
        """Remove the mirrored event; on failure keep the id and schedule a retry"""
        try:
            outcome = self.calendar_sync.remove_appointment_event(appointment)
        except (ProviderError, TokenRefreshFailed) as e:
            logger.error(f"Calendar cleanup failed for appointment {appointment.id}: {e}")
            if isinstance(e, ProviderError):
                self.calendar_sync.schedule_event_removal(appointment)
            return False
        logger.info(f"Calendar cleanup for appointment {appointment.id}: {outcome}")
        return True

    def reschedule(
            self,
            appointment_id: UUID,
            new_date: date,
            new_time: time,
            reason: Optional[str] = None,
            business_id: Optional[UUID] = None,
    ) -> Appointment:
        """
        Book a confirmed replacement at `new_date`/`new_time` and mark the
        original as rescheduled. Returns the new appointment.
        """
        with self.lock.acquire(f"lock:appointment:{appointment_id}"):
            original = self._load_for_update(appointment_id, business_id)
            if not can_transition(original.status, AppointmentStatus.RESCHEDULED):
                self.db.rollback()
                raise InvalidTransition(original.status, AppointmentStatus.RESCHEDULED)

            old_label = f"{original.appointment_date.strftime('%d/%m/%Y')} {original.start_time.strftime('%H:%M')}"
            booking = AppointmentBookingService(self.db, calendar_sync=self.calendar_sync, lock=self.lock)
            replacement = booking.create_appointment(
                business_id=original.business_id,
                service_id=original.service_id,
                client_name=original.client_name,
                client_phone=original.client_phone,
                appointment_date=new_date,
                start_time=new_time,
                staff_id=original.staff_id,
                notes=f"Rescheduled from {old_label}" + (f": {reason}" if reason else ""),
                source=BookingSource.RESCHEDULE,
                status=AppointmentStatus.CONFIRMED,
                replaces_id=original.id,
            )

            original = self._load_for_update(appointment_id, business_id)
            self._apply(original, AppointmentStatus.RESCHEDULED, reason)

        self._after_transition(original, AppointmentStatus.RESCHEDULED, context={
            "new_date": replacement.appointment_date.strftime("%d/%m/%Y"),
            "new_time": replacement.start_time.strftime("%H:%M"),
        })
        return replacement

    def mass_cancel(
            self,
            business_id: UUID,
            day: date,
            reason: str,
            reschedule: bool = False,
    ) -> Dict:
        """
        Clear a day. Pending appointments are canceled. Confirmed ones are
        moved to the next free slot when `reschedule` is set, otherwise (or
        when no slot is found) canceled too.
        """
        business = self.db.query(Business).filter(Business.id == business_id).first()
        if business is None:
            raise NotFound("Business not found", business_id=str(business_id))

        appointments: List[Appointment] = self.db.query(Appointment).filter(
            Appointment.business_id == business_id,
            Appointment.appointment_date == day,
            Appointment.status.in_(AppointmentStatus.ACTIVE),
        ).order_by(Appointment.start_time).all()

        result = {"total": len(appointments), "canceled": 0, "rescheduled": 0, "failed": 0, "details": []}
        cancel_reason = f"Mass cancellation: {reason}" if reason else "Mass cancellation"

        for appointment in appointments:
            detail = {"appointment_id": str(appointment.id), "client_name": appointment.client_name}
            try:
                moved = None
                if reschedule and appointment.status == AppointmentStatus.CONFIRMED:
                    moved = self._reschedule_to_next_slot(business, appointment, day, cancel_reason)

                if moved is not None:
                    detail.update(action="rescheduled", new_appointment_id=str(moved.id),
                                  new_date=moved.appointment_date.isoformat(),
                                  new_time=moved.start_time.strftime("%H:%M"))
                    result["rescheduled"] += 1
                else:
                    self.transition(appointment.id, AppointmentStatus.CANCELED, reason=cancel_reason,
                                    business_id=business_id)
                    detail["action"] = "canceled"
                    result["canceled"] += 1
            except (InvalidTransition, LockTimeout, NotFound, ValidationError) as e:
                # Changed or held by someone else while we were iterating
                logger.warning(f"Mass cancel skipped appointment {appointment.id}: {e}")
                detail.update(action="failed", error=str(e))
                result["failed"] += 1
            result["details"].append(detail)

        logger.info(
            f"Mass cancel for business {business_id} on {day}: "
            f"{result['canceled']} canceled, {result['rescheduled']} rescheduled, {result['failed']} failed"
        )
        return result

    def _reschedule_to_next_slot(
            self, business: Business, appointment: Appointment, day: date, reason: str
    ) -> Optional[Appointment]:
        service = appointment.service
        for _ in range(3):
            slot = AvailabilityService.find_next_available_slot(
                self.db, business, service, after_date=day, staff_id=appointment.staff_id
            )
            if slot is None:
                return None
            try:
                return self.reschedule(appointment.id, slot["date"], slot["start_time"], reason=reason,
                                       business_id=business.id)
            except SlotUnavailable:
                # Taken between lookup and booking; look again
                continue
        return None
