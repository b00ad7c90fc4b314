# app/tasks/notification_tasks.py
"""Client notification tasks"""
import logging
from uuid import UUID

from twilio.base.exceptions import TwilioException

from app.config.celery_config import celery_app
from app.config.database import SessionLocal
from app.core.exceptions import NotFound
from app.services.notification.notification_service import NotificationService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def notify_appointment_status(self, appointment_id: str, new_status: str, context: dict = None):
    """Send the SMS/WhatsApp message for an appointment status change"""
    db = SessionLocal()
    try:
        return NotificationService().send_status_notification(
            db, UUID(appointment_id), new_status, context=context or {}
        )

    except NotFound:
        logger.error(f"Appointment {appointment_id} not found, notification dropped")
        return {"sent": False, "reason": "appointment_not_found"}

    except TwilioException as exc:
        logger.error(f"Notification for {appointment_id} failed: {exc}")
        raise self.retry(exc=exc, countdown=30 * (self.request.retries + 1))

    finally:
        db.close()
