# ============================================================================
# app/api/v1/dashboard/session_packages.py
# ============================================================================
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.orm import Session

from app.api.dependencies import TenantContext, get_current_tenant
from app.config.database import get_db
from app.schemas.scheduling import ManualSessionCreate, SessionPackageCreate
from app.services.appointment.booking_service import normalize_phone
from app.services.sessions.session_package_service import SessionPackageService

router = APIRouter(prefix="/session-packages", tags=["dashboard-sessions"])


@router.get("")
def list_packages(
        client_phone: Optional[str] = Query(None),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    phone = normalize_phone(client_phone) if client_phone else None
    return {"packages": SessionPackageService(db).list_packages(tenant.business_id, client_phone=phone)}


@router.post("", status_code=201)
def create_package(
        payload: SessionPackageCreate,
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    service = SessionPackageService(db)
    package = service.create_package(
        business_id=tenant.business_id,
        client_name=payload.client_name.strip(),
        client_phone=normalize_phone(payload.client_phone),
        service_id=payload.service_id,
        total_sessions=payload.total_sessions,
        notes=payload.notes,
    )
    db.commit()
    return package.to_dict(session_count=0)


@router.get("/{package_id}")
def get_package(
        package_id: UUID = Path(...),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    package = SessionPackageService(db).get_package(tenant.business_id, package_id)
    return {
        **package.to_dict(session_count=len(package.sessions)),
        "sessions": [s.to_dict() for s in package.sessions],
    }


@router.post("/{package_id}/sessions", status_code=201)
def record_manual_session(
        payload: ManualSessionCreate,
        package_id: UUID = Path(...),
        tenant: TenantContext = Depends(get_current_tenant),
        db: Session = Depends(get_db)
):
    """Record a session that did not come from a completed appointment."""
    service = SessionPackageService(db)
    package = service.get_package(tenant.business_id, package_id)
    session = service.record_session(package, session_date=payload.session_date, notes=payload.notes)
    db.commit()
    return {"session": session.to_dict(), "package_status": package.status}
