# ===== app/models/calendar_token.py =====
from sqlalchemy import Column, String, DateTime, LargeBinary, ForeignKey, JSON, Text, Index, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.models.base import Base
import uuid


class TokenStatus:
    ACTIVE = "active"
    NEEDS_RECONNECT = "needs_reconnect"  # refresh token revoked or invalid


class CalendarToken(Base):
    """
    Google Calendar OAuth tokens for a business (staff_id NULL) or one staff member.
    One row per (business_id, staff_id); the NULL staff row gets its own partial index
    because NULLs never collide in a plain unique constraint.
    """
    __tablename__ = "calendar_tokens"
    __table_args__ = (
        UniqueConstraint("business_id", "staff_id", name="uq_calendar_tokens_business_staff"),
        Index(
            "uq_calendar_tokens_business_wide",
            "business_id",
            unique=True,
            postgresql_where=text("staff_id IS NULL"),
            sqlite_where=text("staff_id IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    staff_id = Column(UUID(as_uuid=True), ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=True)

    # OAuth tokens, Fernet encrypted
    access_token_encrypted = Column(LargeBinary, nullable=False)
    refresh_token_encrypted = Column(LargeBinary, nullable=False)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    # Sync target and account info
    calendar_id = Column(String, nullable=False, default="primary")
    connected_email = Column(String, nullable=True)
    calendar_list = Column(JSON, default=list)  # [{"id": ..., "name": ..., "primary": bool}]

    status = Column(String(20), nullable=False, default=TokenStatus.ACTIVE)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        """Public view, never exposes tokens"""
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "staff_id": str(self.staff_id) if self.staff_id else None,
            "calendar_id": self.calendar_id,
            "connected_email": self.connected_email,
            "status": self.status,
            "connected_at": self.created_at.isoformat() if self.created_at else None,
        }
