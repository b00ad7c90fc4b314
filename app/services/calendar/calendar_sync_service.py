# app/services/calendar/calendar_sync_service.py
"""
Mirrors appointments into Google Calendar.

The policy's calendar_sync_mode decides whose calendar receives the event:
the business-wide connection (company) or the assigned staff member's own
connection (per_staff). Local appointment data is the source of truth; a
failed sync is recorded on the appointment and retried by the worker, never
rolled back into the booking.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.core.exceptions import NotConnected, NotFound, ProviderError, TokenRefreshFailed, ValidationError
from app.models.appointment import Appointment, AppointmentStatus, SyncStatus
from app.models.business import Business
from app.models.scheduling_policy import CalendarSyncMode, SchedulingPolicy
from app.services.availability.availability_service import AvailabilityService
from app.utils.keyed_lock import get_keyed_lock

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class SyncResult:
    status: str  # synced, already_synced, skipped
    reason: Optional[str] = None
    event_id: Optional[str] = None
    meet_link: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def extract_meet_link(event: Dict) -> Optional[str]:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    for entry in (event.get("conferenceData") or {}).get("entryPoints", []):
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None


class CalendarSyncService:

    def __init__(self, db: Session, calendar=None, lock=None):
        self.db = db
        self._calendar = calendar
        self.lock = lock or get_keyed_lock()

    @property
    def calendar(self):
        # Built lazily so booking does not need Google settings unless a sync runs
        if self._calendar is None:
            from app.services.calendar.google_calendar_service import GoogleCalendarService

            self._calendar = GoogleCalendarService(lock=self.lock)
        return self._calendar

    # ------------------------------------------------------------------
    # Background scheduling
    # ------------------------------------------------------------------

    def schedule_sync(self, appointment: Appointment) -> None:
        from app.tasks.calendar_tasks import sync_appointment_to_calendar

        try:
            sync_appointment_to_calendar.delay(str(appointment.id))
        except Exception as e:
            logger.error(f"Could not enqueue calendar sync for appointment {appointment.id}: {e}")

    def schedule_event_removal(self, appointment: Appointment) -> None:
        from app.tasks.calendar_tasks import delete_calendar_event

        try:
            delete_calendar_event.apply_async(args=[str(appointment.id)], countdown=60)
        except Exception as e:
            logger.error(f"Could not enqueue calendar cleanup for appointment {appointment.id}: {e}")

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def token_owner(self, business_id: UUID, staff_id: Optional[UUID]) -> Optional[UUID]:
        """
        staff_id whose token is used, None meaning the business-wide token.
        Raises NotConnected when per-staff sync has no staff to route to.
        """
        policy = AvailabilityService.get_policy(self.db, business_id)
        if policy.calendar_sync_mode == CalendarSyncMode.PER_STAFF:
            if staff_id is None:
                raise NotConnected("no staff assigned", business_id=str(business_id))
            return staff_id
        return None

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def build_event(self, appointment: Appointment, business: Business, with_meet_link: bool) -> Dict:
        tz = business.timezone or settings.DEFAULT_TIMEZONE
        service_name = appointment.service.name if appointment.service else "Appointment"

        description = [f"Client: {appointment.client_name}", f"Phone: {appointment.client_phone}"]
        if appointment.staff:
            description.append(f"Staff: {appointment.staff.name}")
        if appointment.notes:
            description.append(f"Notes: {appointment.notes}")

        body = {
            "summary": f"{service_name} - {appointment.client_name}",
            "description": "\n".join(description),
            "start": {"dateTime": appointment.starts_at.isoformat(timespec="seconds"), "timeZone": tz},
            "end": {"dateTime": appointment.ends_at.isoformat(timespec="seconds"), "timeZone": tz},
            "extendedProperties": {"private": {"appointment_id": str(appointment.id)}},
        }
        if with_meet_link:
            body["conferenceData"] = {
                "createRequest": {
                    "requestId": str(appointment.id),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }
        return body

    def sync_appointment(self, appointment_id: UUID) -> SyncResult:
        """
        Create the calendar event for an appointment, at most once.

        Holds the same per-appointment lock as status changes, so a cancel
        cannot commit between the insert and storing the event id.

        Raises:
            NotFound: appointment does not exist
            TokenRefreshFailed: the calendar must be reconnected
            ProviderError: Google failed; the caller may retry
        """
        with self.lock.acquire(f"lock:appointment:{appointment_id}"):
            appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id) \
                .populate_existing().first()
            if appointment is None:
                raise NotFound("Appointment not found", appointment_id=str(appointment_id))

            if appointment.external_event_id:
                return SyncResult("already_synced", reason="already synced",
                                  event_id=appointment.external_event_id, meet_link=appointment.meet_link)

            if appointment.status not in AppointmentStatus.ACTIVE:
                return self._skip(appointment, f"appointment is {appointment.status}")

            try:
                owner = self.token_owner(appointment.business_id, appointment.staff_id)
                token = self.calendar.get_valid_token(self.db, appointment.business_id, owner)
            except NotConnected as e:
                return self._skip(appointment, e.reason)
            except TokenRefreshFailed as e:
                self._record_failure(appointment, e)
                raise

            policy = AvailabilityService.get_policy(self.db, appointment.business_id)
            body = self.build_event(appointment, appointment.business, policy.generate_meet_link)

            try:
                event = self.calendar.create_event(token, body, with_meet_link=policy.generate_meet_link)
            except ProviderError as e:
                self._record_failure(appointment, e)
                raise

            # Processes without a shared lock backend can still change the status meanwhile
            appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id) \
                .populate_existing().with_for_update().first()
            if appointment is None:
                self.calendar.delete_event(token, event["id"], token.calendar_id)
                raise NotFound("Appointment not found", appointment_id=str(appointment_id))

            appointment.external_event_id = event["id"]
            appointment.external_calendar_id = token.calendar_id
            appointment.meet_link = extract_meet_link(event)
            appointment.sync_status = SyncStatus.SYNCED
            appointment.sync_attempts = (appointment.sync_attempts or 0) + 1
            appointment.last_sync_error = None
            appointment.last_synced_at = datetime.now(timezone.utc)
            self.db.commit()

            if appointment.status not in AppointmentStatus.ACTIVE:
                return self._withdraw(appointment)

            logger.info(f"Synced appointment {appointment.id} to calendar event {event['id']}")
            return SyncResult("synced", event_id=appointment.external_event_id, meet_link=appointment.meet_link)

    def _withdraw(self, appointment: Appointment) -> SyncResult:
        """Remove an event created for an appointment that stopped being active during the insert"""
        reason = f"appointment is {appointment.status}"
        logger.warning(f"Appointment {appointment.id} became {appointment.status} during sync, removing its event")
        try:
            self.remove_appointment_event(appointment)
        except ProviderError as e:
            logger.error(f"Could not remove event of appointment {appointment.id}: {e}")
            self.schedule_event_removal(appointment)
        except TokenRefreshFailed as e:
            logger.error(f"Could not remove event of appointment {appointment.id}: {e}")
        return SyncResult("skipped", reason=f"skipped: {reason}")

    def _skip(self, appointment: Appointment, reason: str) -> SyncResult:
        appointment.sync_status = SyncStatus.SKIPPED
        appointment.last_sync_error = f"skipped: {reason}"
        self.db.commit()
        logger.info(f"Calendar sync skipped for appointment {appointment.id}: {reason}")
        return SyncResult("skipped", reason=f"skipped: {reason}")

    def _record_failure(self, appointment: Appointment, error: Exception) -> None:
        appointment.sync_status = SyncStatus.FAILED
        appointment.sync_attempts = (appointment.sync_attempts or 0) + 1
        appointment.last_sync_error = str(error)
        self.db.commit()
        logger.error(f"Calendar sync failed for appointment {appointment.id}: {error}")

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_event(
            self,
            event_id: str,
            business_id: UUID,
            staff_id: Optional[UUID] = None,
            calendar_id: Optional[str] = None,
    ) -> bool:
        """
        Delete an event from the calendar the appointment was synced to.
        Returns False when the event was already gone.
        """
        owner = self.token_owner(business_id, staff_id)
        token = self.calendar.get_valid_token(self.db, business_id, owner)
        return self.calendar.delete_event(token, event_id, calendar_id)

    def remove_appointment_event(self, appointment: Appointment) -> str:
        """
        Delete the appointment's event and clear its reference.

        On ProviderError/TokenRefreshFailed the reference is kept so a retry
        can still find the event, and the error propagates.
        """
        event_id = appointment.external_event_id
        if not event_id:
            return "nothing_to_delete"

        try:
            deleted = self.delete_event(
                event_id, appointment.business_id, appointment.staff_id, appointment.external_calendar_id
            )
        except NotConnected as e:
            # Nobody left to delete it with
            appointment.external_event_id = None
            appointment.external_calendar_id = None
            appointment.sync_status = SyncStatus.DELETE_FAILED
            appointment.last_sync_error = f"event {event_id} left in calendar: {e.reason}"
            self.db.commit()
            logger.warning(f"Calendar event {event_id} of appointment {appointment.id} left behind: {e.reason}")
            return "not_connected"
        except (ProviderError, TokenRefreshFailed) as e:
            appointment.sync_status = SyncStatus.DELETE_FAILED
            appointment.last_sync_error = str(e)
            self.db.commit()
            raise

        appointment.external_event_id = None
        appointment.external_calendar_id = None
        appointment.sync_status = SyncStatus.DELETED
        appointment.last_sync_error = None
        appointment.last_synced_at = datetime.now(timezone.utc)
        self.db.commit()
        return "deleted" if deleted else "already_gone"

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_sync_mode(self, business_id: UUID, mode: str, generate_meet_link: Optional[bool] = None):
        if mode not in CalendarSyncMode.ALL:
            raise ValidationError(f"Unknown calendar sync mode '{mode}'")

        policy = self.db.query(SchedulingPolicy).filter_by(business_id=business_id).first()
        if policy is None:
            policy = SchedulingPolicy.defaults(business_id)
            self.db.add(policy)

        policy.calendar_sync_mode = mode
        if generate_meet_link is not None:
            policy.generate_meet_link = generate_meet_link
        self.db.commit()
        logger.info(f"Business {business_id} calendar sync mode set to {mode}")
        return policy
