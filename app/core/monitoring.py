"""Health checks for the API, its database and the pieces booking depends on"""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.redis import get_redis
from app.config.settings import get_settings

health_router = APIRouter()
settings = get_settings()


def integration_status() -> dict:
    """Which optional integrations are configured; missing ones degrade features, not the API"""
    return {
        "google_calendar": "configured" if settings.GOOGLE_CLIENT_ID and settings.CALENDAR_ENCRYPTION_KEY
        else "not configured",
        "notifications": "configured" if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_FROM_NUMBER
        else "not configured",
    }


@health_router.get("/")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


@health_router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Database and Redis reachability. Redis carries the Celery broker and,
    with LOCK_BACKEND=redis, the booking locks; without it bookings still
    work but calendar sync and notifications queue up nowhere.
    """
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    try:
        redis_client = await get_redis()
        await redis_client.ping()
        checks["redis"] = "healthy"
    except Exception as e:
        checks["redis"] = f"unhealthy: {str(e)}"

    if checks["database"] != "healthy":
        overall = "unhealthy"
    elif checks["redis"] != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        **checks,
        "overall": overall,
        "lock_backend": settings.LOCK_BACKEND,
        "integrations": integration_status(),
    }
