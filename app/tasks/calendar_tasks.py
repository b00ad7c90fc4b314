# ===== app/tasks/calendar_tasks.py =====
from uuid import UUID
import logging

from app.config.celery_config import celery_app
from app.config.database import SessionLocal
from app.core.exceptions import LockTimeout, NotFound, ProviderError, TokenRefreshFailed
from app.models.appointment import Appointment
from app.services.calendar.calendar_sync_service import CalendarSyncService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sync_appointment_to_calendar(self, appointment_id: str):
    """Sync appointment to external calendar (push operation)"""
    db = SessionLocal()
    try:
        result = CalendarSyncService(db).sync_appointment(UUID(appointment_id))
        return result.to_dict()

    except NotFound:
        logger.error(f"Appointment {appointment_id} not found")
        return {"status": "failed", "reason": "appointment_not_found"}

    except TokenRefreshFailed:
        # Retrying cannot help until the account is reconnected
        logger.error(f"Calendar sync for {appointment_id} needs a reconnected calendar")
        return {"status": "failed", "reason": "reconnect_required"}

    except (ProviderError, LockTimeout) as exc:
        logger.error(f"Calendar sync failed for {appointment_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def delete_calendar_event(self, appointment_id: str):
    """Retry removing the calendar event of a canceled or rescheduled appointment"""
    db = SessionLocal()
    try:
        appointment = db.query(Appointment).filter_by(id=UUID(appointment_id)).first()
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            return {"status": "failed", "reason": "appointment_not_found"}

        outcome = CalendarSyncService(db).remove_appointment_event(appointment)
        logger.info(f"Calendar cleanup for {appointment_id}: {outcome}")
        return {"status": outcome}

    except TokenRefreshFailed:
        logger.error(f"Calendar cleanup for {appointment_id} needs a reconnected calendar")
        return {"status": "failed", "reason": "reconnect_required"}

    except (ProviderError, LockTimeout) as exc:
        logger.error(f"Calendar cleanup failed for {appointment_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()
