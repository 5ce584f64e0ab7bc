"""GET /api/health: cheap liveness check, no network calls."""

from fastapi import APIRouter

from modelmarket.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s
from modelmarket.core.timeutil import iso, utcnow

router = APIRouter()


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "version": APP_VERSION,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": iso(utcnow()),
    }
