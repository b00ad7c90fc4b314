# app/models/message_template.py
from sqlalchemy import Column, String, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from app.models.base import Base


class TemplateType:
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"
    RESCHEDULE = "reschedule"


class MessageTemplate(Base):
    """Per-business text for status notifications, with {{placeholder}} fields"""
    __tablename__ = "message_templates"
    __table_args__ = (
        UniqueConstraint("business_id", "type", name="uq_message_templates_business_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(30), nullable=False)
    template = Column(Text, nullable=False)
    active = Column(Boolean, default=True)
    send_notification = Column(Boolean, default=True)  # merchant opt-out

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
