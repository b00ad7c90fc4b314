# app/services/notification/notification_service.py
"""Client notifications for appointment status changes (Twilio SMS / WhatsApp)"""
import logging
import re
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from app.config.settings import get_settings
from app.core.exceptions import NotFound
from app.models.appointment import Appointment, AppointmentStatus
from app.models.message_template import MessageTemplate, TemplateType
from app.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)
settings = get_settings()

STATUS_TEMPLATES = {
    AppointmentStatus.CONFIRMED: TemplateType.CONFIRMATION,
    AppointmentStatus.CANCELED: TemplateType.CANCELLATION,
    AppointmentStatus.RESCHEDULED: TemplateType.RESCHEDULE,
}

DEFAULT_TEMPLATES = {
    TemplateType.CONFIRMATION: (
        "Hi {{client_name}}! Your {{service}} at {{business_name}} is confirmed for "
        "{{date}} at {{time}}."
    ),
    TemplateType.CANCELLATION: (
        "Hi {{client_name}}, your {{service}} at {{business_name}} on {{date}} at {{time}} "
        "has been canceled."
    ),
    TemplateType.RESCHEDULE: (
        "Hi {{client_name}}, your {{service}} at {{business_name}} was moved from "
        "{{date}} {{time}} to {{new_date}} at {{new_time}}."
    ),
}

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template: str, values: Dict[str, str]) -> str:
    """Fill {{name}} placeholders; unknown ones are left as they are"""
    return PLACEHOLDER.sub(lambda m: str(values.get(m.group(1), m.group(0))), template)


def format_recipient(phone: str, channel: str) -> str:
    digits = "".join(ch for ch in phone if ch.isdigit())
    number = f"+{digits}"
    return f"whatsapp:{number}" if channel == "whatsapp" else number


class NotificationService:

    def __init__(self, client: Optional[Client] = None):
        self.channel = settings.NOTIFICATION_CHANNEL
        if client is None and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self.client = client

    def _template_for(self, db: Session, business_id: UUID, template_type: str) -> Optional[str]:
        """Business template, the built-in default, or None when the business opted out"""
        row = db.query(MessageTemplate).filter(
            MessageTemplate.business_id == business_id,
            MessageTemplate.type == template_type,
        ).first()
        if row is not None:
            if not row.send_notification:
                return None
            if row.active and row.template:
                return row.template
        return DEFAULT_TEMPLATES[template_type]

    def build_message(
            self, db: Session, appointment: Appointment, new_status: str, context: Optional[Dict] = None
    ) -> Optional[str]:
        template = self._template_for(db, appointment.business_id, STATUS_TEMPLATES[new_status])
        if template is None:
            return None

        values = {
            "client_name": appointment.client_name,
            "date": appointment.appointment_date.strftime("%d/%m/%Y"),
            "time": appointment.start_time.strftime("%H:%M"),
            "service": appointment.service.name if appointment.service else "",
            "business_name": appointment.business.name if appointment.business else "",
            "meet_link": appointment.meet_link or "",
        }
        values.update(context or {})
        message = render_template(template, values)

        if new_status == AppointmentStatus.CONFIRMED and appointment.meet_link and "{{meet_link}}" not in template:
            message += f"\nVideo call: {appointment.meet_link}"
        return message

    def send_status_notification(
            self, db: Session, appointment_id: UUID, new_status: str, context: Optional[Dict] = None
    ) -> Dict:
        """
        Send the notification for a status change and log the outcome.
        TwilioException propagates after logging so the worker can retry.
        """
        if new_status not in STATUS_TEMPLATES:
            return {"sent": False, "reason": "status does not trigger a notification"}

        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFound("Appointment not found", appointment_id=str(appointment_id))

        template_type = STATUS_TEMPLATES[new_status]
        message = self.build_message(db, appointment, new_status, context)
        if message is None:
            return {"sent": False, "reason": "notifications disabled for this template"}

        to_phone = format_recipient(appointment.client_phone, self.channel)

        if self.client is None or not settings.TWILIO_FROM_NUMBER:
            self._log(db, appointment, to_phone, template_type, "skipped", payload={"body": message},
                      error="Twilio is not configured")
            logger.warning(f"Twilio not configured, skipped {template_type} for appointment {appointment.id}")
            return {"sent": False, "reason": "twilio not configured"}

        try:
            twilio_message = self.client.messages.create(
                body=message,
                from_=format_recipient(settings.TWILIO_FROM_NUMBER, self.channel),
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio error sending {template_type} to {to_phone}: {e}")
            self._log(db, appointment, to_phone, template_type, "error", payload={"body": message}, error=str(e))
            raise

        self._log(db, appointment, to_phone, template_type, "sent", payload={"body": message},
                  provider_message_id=twilio_message.sid)
        logger.info(f"Sent {template_type} for appointment {appointment.id}: {twilio_message.sid}")
        return {"sent": True, "message_sid": twilio_message.sid}

    def _log(self, db: Session, appointment: Appointment, phone: str, template_type: str, status: str,
             payload: Dict, error: Optional[str] = None, provider_message_id: Optional[str] = None) -> None:
        db.add(NotificationLog(
            business_id=appointment.business_id,
            appointment_id=appointment.id,
            phone=phone,
            type=template_type,
            status=status,
            provider_message_id=provider_message_id,
            error=error,
            payload=payload,
        ))
        db.commit()


class CeleryNotificationDispatcher:
    """Hands status notifications to the worker"""

    def dispatch(self, appointment_id: UUID, new_status: str, context: Optional[Dict] = None) -> None:
        from app.tasks.notification_tasks import notify_appointment_status

        notify_appointment_status.delay(str(appointment_id), new_status, context or {})
