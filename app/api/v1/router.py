"""
API v1 router setup
Organized into: public (booking page, OAuth callback) and dashboard (JWT) routes
"""
from fastapi import APIRouter

from app.api.v1.public import booking
from app.api.v1.dashboard import appointments, calendar, session_packages

api_v1_router = APIRouter()

# ============================================================================
# PUBLIC ROUTES (No authentication required)
# ============================================================================
api_v1_router.include_router(
    booking.router,
    tags=["Public"]
)

api_v1_router.include_router(
    calendar.callback_router,
    tags=["Public"]
)

# ============================================================================
# DASHBOARD ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    appointments.router,
    prefix="/dashboard",
    tags=["Dashboard"]
)

api_v1_router.include_router(
    session_packages.router,
    prefix="/dashboard",
    tags=["Dashboard"]
)

api_v1_router.include_router(
    calendar.router,
    prefix="/dashboard/calendar",
    tags=["Dashboard"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and available route groups"""
    return {
        "version": "1.0",
        "authentication": {
            "public": "No authentication required, business resolved from the booking slug",
            "dashboard": "JWT Bearer token carrying business_id (and staff_id for staff logins)",
        },
        "routes": {
            "booking_page": "/api/v1/public/{slug}",
            "calendar_callback": "/api/v1/calendar/google/callback",
            "appointments": "/api/v1/dashboard/appointments",
            "session_packages": "/api/v1/dashboard/session-packages",
            "calendar": "/api/v1/dashboard/calendar",
        },
    }
