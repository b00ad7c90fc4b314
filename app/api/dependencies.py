# ============================================================================
# FILE: app/api/dependencies.py
# Authentication dependencies for dashboard routes
# ============================================================================
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.settings import settings
from app.models.business import Business

# ============================================================================
# Security Schemes
# ============================================================================

# Tokens are issued by the account service; this API only verifies them
jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Enter your JWT access token"
)


@dataclass
class TenantContext:
    """Who is calling: the business they act for and, for staff logins, which staff member"""
    business_id: UUID
    user_id: Optional[str] = None
    staff_id: Optional[UUID] = None


def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_type = payload.get("type", "access")
    if token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def get_current_tenant(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
) -> TenantContext:
    """Dashboard dependency: decode the bearer token into a TenantContext"""
    payload = verify_access_token(credentials.credentials)

    business_id = payload.get("business_id")
    if not business_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User not associated with a business"
        )

    try:
        staff_id = payload.get("staff_id")
        return TenantContext(
            business_id=UUID(str(business_id)),
            user_id=payload.get("sub"),
            staff_id=UUID(str(staff_id)) if staff_id else None,
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed token claims",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_public_business(
        slug: str = Path(..., description="Public booking slug of the business"),
        db: Session = Depends(get_db),
) -> Business:
    """Resolve the business behind a public booking page"""
    business = db.query(Business).filter(
        Business.slug == slug,
        Business.is_active == True  # noqa: E712
    ).first()
    if not business:
        raise HTTPException(status_code=404, detail="Business not found")
    return business
