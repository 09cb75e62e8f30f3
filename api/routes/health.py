"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.email.resend_adapter import email_service
from api.dependencies import get_current_admin_user
from infrastructure.config import get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.cache import cache_service
from services.payments import payment_service

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Health check with database connectivity."""
    try:
        result = await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        result.scalar()
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except Exception as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/redis")
async def health_redis():
    """Check the cache backend. Memory fallback counts as degraded, not down."""
    if not cache_service.is_connected:
        return {"status": "degraded", "service": "redis", "backend": cache_service.backend}
    try:
        ok = await asyncio.wait_for(cache_service.health_check(), timeout=3.0)
    except TimeoutError:
        raise HTTPException(status_code=503, detail="Redis timeout")
    if not ok:
        raise HTTPException(status_code=503, detail="Redis unavailable")
    return {"status": "healthy", "service": "redis", "backend": cache_service.backend}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Kubernetes-style readiness probe."""
    db_ok = False
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        db_ok = True
    except Exception as e:
        logger.warning("Readiness DB check failed: %s", e)

    # DB is required; without Redis the cache and rate limits run per-process
    return {
        "ready": db_ok,
        "database": "ok" if db_ok else "unavailable",
        "redis": "ok" if cache_service.is_connected else "degraded",
    }


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}


@router.get("/health/services")
async def services_check(admin_user: User = Depends(get_current_admin_user)):
    """Check configuration of external services."""
    services = {
        name: {"configured": configured}
        for name, configured in payment_service.providers.items()
    }
    services["resend"] = {
        "configured": email_service.is_configured,
        "from_email": settings.resend_from_email,
    }

    all_configured = all(s["configured"] for s in services.values())

    return {
        "status": "healthy" if all_configured else "degraded",
        "services": services,
        "timestamp": datetime.now(UTC).isoformat(),
    }
