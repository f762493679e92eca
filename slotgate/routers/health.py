# slotgate/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB, and whether the external providers are configured.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from slotgate.database import get_db
from slotgate.config import settings
from slotgate.utils.civil_time import utc_now

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    result = {
        "status": "ok",
        "timestamp": utc_now().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "payment_gateway": "configured" if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET else "not_configured",
        "plate_recognizer": "configured" if settings.PLATE_RECOGNIZER_API_KEY else "not_configured",
        "scheduler": "enabled" if settings.SCHEDULER_ENABLED else "disabled",
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result
