# app/services/sessions/session_package_service.py
"""
Session package bookkeeping.

record_session is the single way sessions get created, whether from a
completed appointment or entered by staff, so numbering and package
completion follow the same rules everywhere. Nothing here commits: callers
own the transaction, which lets the appointment completion and its session
land together.
"""
import logging
from datetime import date
from typing import Optional, List
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import NotFound, ValidationError
from app.models.appointment import Appointment
from app.models.service import Service
from app.models.session_package import SessionPackage, PackageSession, PackageStatus

logger = logging.getLogger(__name__)

AUTO_CREATED_NOTE = "auto-created"


class SessionPackageService:

    def __init__(self, db: Session):
        self.db = db

    def find_active_package(
            self, business_id: UUID, client_phone: str, service_id: Optional[UUID]
    ) -> Optional[SessionPackage]:
        return self.db.query(SessionPackage).filter(
            SessionPackage.business_id == business_id,
            SessionPackage.client_phone == client_phone,
            SessionPackage.service_id == service_id,
            SessionPackage.status == PackageStatus.ACTIVE,
        ).with_for_update().first()

    def create_package(
            self,
            business_id: UUID,
            client_name: str,
            client_phone: str,
            service_id: Optional[UUID] = None,
            total_sessions: Optional[int] = None,
            notes: Optional[str] = None,
    ) -> SessionPackage:
        if total_sessions is not None and total_sessions <= 0:
            raise ValidationError("total_sessions must be positive")
        if self.find_active_package(business_id, client_phone, service_id):
            raise ValidationError("Client already has an active package for this service")

        package = SessionPackage(
            business_id=business_id,
            client_name=client_name,
            client_phone=client_phone,
            service_id=service_id,
            total_sessions=total_sessions,
            notes=notes,
            status=PackageStatus.ACTIVE,
        )
        self.db.add(package)
        self.db.flush()
        return package

    def get_or_create_active_package(
            self, business_id: UUID, client_name: str, client_phone: str, service_id: Optional[UUID]
    ) -> SessionPackage:
        package = self.find_active_package(business_id, client_phone, service_id)
        if package:
            return package
        logger.info(f"Auto-creating session package for {client_phone} / service {service_id}")
        return self.create_package(
            business_id=business_id,
            client_name=client_name,
            client_phone=client_phone,
            service_id=service_id,
            notes=AUTO_CREATED_NOTE,
        )

    def count_sessions(self, package_id: UUID) -> int:
        return self.db.query(func.count(PackageSession.id)).filter(
            PackageSession.package_id == package_id
        ).scalar() or 0

    def record_session(
            self,
            package: SessionPackage,
            session_date: date,
            appointment_id: Optional[UUID] = None,
            notes: Optional[str] = None,
    ) -> PackageSession:
        """
        Append the next session to a package.

        With an appointment id this is idempotent: the session already linked
        to that appointment is returned unchanged.
        """
        if appointment_id is not None:
            existing = self.db.query(PackageSession).filter(
                PackageSession.appointment_id == appointment_id
            ).first()
            if existing:
                return existing

        # Row lock serializes numbering; the caller's copy may also be stale
        package = self.db.query(SessionPackage).filter(SessionPackage.id == package.id) \
            .populate_existing().with_for_update().one()
        if package.status != PackageStatus.ACTIVE:
            raise ValidationError(f"Package is {package.status}")

        number = self.count_sessions(package.id) + 1
        session = PackageSession(
            business_id=package.business_id,
            package_id=package.id,
            appointment_id=appointment_id,
            session_number=number,
            session_date=session_date,
            notes=notes,
        )
        self.db.add(session)

        if package.total_sessions is not None and number >= package.total_sessions:
            package.status = PackageStatus.COMPLETED
            logger.info(f"Session package {package.id} completed ({number}/{package.total_sessions})")

        self.db.flush()
        return session

    def record_completion(self, appointment: Appointment) -> Optional[PackageSession]:
        """Count a completed appointment against the client's package, if its service tracks sessions"""
        service = self.db.query(Service).filter(Service.id == appointment.service_id).first()
        if not service or not service.requires_sessions:
            return None

        # Checked before touching packages so a re-run cannot open a new package
        existing = self.db.query(PackageSession).filter(
            PackageSession.appointment_id == appointment.id
        ).first()
        if existing:
            logger.info(f"Appointment {appointment.id} already counted as session {existing.session_number}")
            return existing

        package = self.get_or_create_active_package(
            business_id=appointment.business_id,
            client_name=appointment.client_name,
            client_phone=appointment.client_phone,
            service_id=appointment.service_id,
        )
        return self.record_session(
            package,
            session_date=appointment.appointment_date,
            appointment_id=appointment.id,
        )

    def get_package(self, business_id: UUID, package_id: UUID) -> SessionPackage:
        package = self.db.query(SessionPackage).filter(
            SessionPackage.id == package_id,
            SessionPackage.business_id == business_id,
        ).first()
        if not package:
            raise NotFound("Session package not found", package_id=str(package_id))
        return package

    def list_packages(self, business_id: UUID, client_phone: Optional[str] = None) -> List[dict]:
        query = self.db.query(SessionPackage).filter(SessionPackage.business_id == business_id)
        if client_phone:
            query = query.filter(SessionPackage.client_phone == client_phone)
        packages = query.order_by(SessionPackage.created_at.desc()).all()
        return [p.to_dict(session_count=self.count_sessions(p.id)) for p in packages]
