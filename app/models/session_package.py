# app/models/session_package.py
"""
Session packages: a bounded (or open-ended) run of visits for one client and service.
Completed appointments of session-tracked services are counted here.
"""
from sqlalchemy import Column, String, Integer, Text, Date, DateTime, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from app.models.base import Base


class PackageStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


class SessionPackage(Base):
    __tablename__ = "session_packages"
    __table_args__ = (
        Index("ix_session_packages_lookup", "business_id", "client_phone", "service_id", "status"),
        # At most one active package per (business, client, service)
        Index(
            "uq_session_packages_active",
            "business_id", "client_phone", "service_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(UUID(as_uuid=True), ForeignKey("services.id"), nullable=True)

    client_name = Column(String, nullable=False)
    client_phone = Column(String, nullable=False)

    total_sessions = Column(Integer, nullable=True)  # None = unlimited
    status = Column(String(20), nullable=False, default=PackageStatus.ACTIVE)
    notes = Column(Text, nullable=True)

    sessions = relationship(
        "PackageSession", back_populates="package", order_by="PackageSession.session_number"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self, session_count=None):
        return {
            "id": str(self.id),
            "service_id": str(self.service_id) if self.service_id else None,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "total_sessions": self.total_sessions,
            "status": self.status,
            "notes": self.notes,
            "session_count": session_count,
        }


class PackageSession(Base):
    """One recorded visit inside a package (table: sessions)"""
    __tablename__ = "sessions"
    __table_args__ = (
        UniqueConstraint("package_id", "session_number", name="uq_sessions_package_number"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    package_id = Column(
        UUID(as_uuid=True), ForeignKey("session_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Unique so the same appointment can never be counted twice
    appointment_id = Column(UUID(as_uuid=True), ForeignKey("appointments.id"), nullable=True, unique=True)

    session_number = Column(Integer, nullable=False)
    session_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)

    package = relationship("SessionPackage", back_populates="sessions")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            "id": str(self.id),
            "package_id": str(self.package_id),
            "appointment_id": str(self.appointment_id) if self.appointment_id else None,
            "session_number": self.session_number,
            "session_date": self.session_date.isoformat(),
            "notes": self.notes,
        }
