"""Health check endpoints."""
import logging

from fastapi import APIRouter

from app.config import settings
from app.db.store import check_store_health

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/store")
async def store_check():
    """Diagnostic endpoint: pings the configured storage backend."""
    result = await check_store_health()
    if not result["healthy"]:
        logger.warning(f"Store health check failed: {result.get('error')}")
    return result
