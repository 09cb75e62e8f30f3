"""
Admin monitoring endpoints.

Reads the in-process error tracker and performance monitor, probes the
database and cache, and exposes a few maintenance actions.
"""

import asyncio
import logging
import resource
import sys
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user
from api.middleware.rate_limit import limiter
from api.schemas.admin import (
    HealthCheck,
    MonitoringActionRequest,
    MonitoringOverview,
    MonitoringResponse,
    SystemHealth,
)
from api.schemas.common import ApiResponse
from infrastructure.config import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    BlogPost,
    Book,
    Course,
    Enrollment,
    Event,
    EventRegistration,
    Order,
    PaymentTransaction,
    Review,
    User,
)
from services.cache import CacheService, get_cache
from services.monitoring import (
    HOUR_MS,
    ErrorTracker,
    PerformanceMonitor,
    get_error_tracker,
    get_performance_monitor,
)
from services.payments import PaymentService, get_payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/monitoring", tags=["Admin - Monitoring"])

ACTIONS = ("resolve", "clear_cache", "cleanup_logs")

COUNTED_TABLES = {
    "users": User,
    "books": Book,
    "orders": Order,
    "reviews": Review,
    "courses": Course,
    "enrollments": Enrollment,
    "events": Event,
    "event_registrations": EventRegistration,
    "blog_posts": BlogPost,
    "payment_transactions": PaymentTransaction,
}

MEMORY_WARNING_MB = 512
MEMORY_DEGRADED_MB = 1024


def _rss_mb() -> float:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # bytes on macOS, kilobytes elsewhere
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(usage / divisor, 1)


async def _check_database(db: AsyncSession) -> HealthCheck:
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        return HealthCheck(status="healthy")
    except Exception as e:
        logger.error("Monitoring database probe failed: %s", e)
        return HealthCheck(status="unhealthy", details={"error": str(e)})


async def _check_cache(cache: CacheService) -> HealthCheck:
    details = {"backend": cache.backend}
    try:
        ok = await cache.health_check()
    except Exception as e:
        logger.warning("Monitoring cache probe failed: %s", e)
        return HealthCheck(status="degraded", details={**details, "error": str(e)})
    return HealthCheck(status="healthy" if ok else "degraded", details=details)


def _check_memory() -> HealthCheck:
    rss = _rss_mb()
    if rss > MEMORY_DEGRADED_MB:
        state = "degraded"
    elif rss > MEMORY_WARNING_MB:
        state = "warning"
    else:
        state = "healthy"
    return HealthCheck(status=state, details={"max_rss_mb": rss})


def _overall_health(checks: dict[str, HealthCheck]) -> str:
    states = {check.status for check in checks.values()}
    if "unhealthy" in states:
        return "unhealthy"
    if "degraded" in states:
        return "degraded"
    return "healthy"


def _overall_status(health: str, error_rate: float, average_response_time: float) -> str:
    if health == "unhealthy" or error_rate > 10 or average_response_time > 2000:
        return "critical"
    if health == "degraded" or error_rate > 5 or average_response_time > 1000:
        return "warning"
    return "healthy"


async def _table_counts(db: AsyncSession) -> dict[str, int]:
    counts = {}
    for name, model in COUNTED_TABLES.items():
        counts[name] = (await db.execute(select(func.count(model.id)))).scalar() or 0
    return counts


@router.get("", response_model=ApiResponse[MonitoringResponse])
@limiter.limit("30/minute")
async def get_monitoring(
    request: Request,
    current_admin: Annotated[User, Depends(get_current_admin_user)],
    time_window: int = Query(HOUR_MS, ge=60_000, le=7 * 24 * HOUR_MS),
    details: bool = False,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    tracker: ErrorTracker = Depends(get_error_tracker),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Performance, error and health overview.

    ``time_window`` is in milliseconds. ``details=true`` adds row counts
    for the main tables.

    **Admin access required.**
    """
    performance = monitor.get_stats(time_window)
    requests_stats = performance["requests"]
    alerts = tracker.get_alerts() + monitor.get_alerts(time_window)
    cache_stats = cache.stats()

    checks = {
        "database": await _check_database(db),
        "cache": await _check_cache(cache),
        "memory": _check_memory(),
    }
    health = _overall_health(checks)

    overview = MonitoringOverview(
        status=_overall_status(
            health,
            requests_stats["error_rate"],
            requests_stats["average_response_time"],
        ),
        total_requests=requests_stats["total"],
        error_rate=requests_stats["error_rate"],
        average_response_time=requests_stats["average_response_time"],
        cache_hit_rate=cache_stats["hit_rate"],
        active_alerts=len(alerts),
    )

    errors: dict[str, Any] = {
        "stats": tracker.get_error_stats(time_window),
        "alerts": alerts,
        "insights": tracker.get_performance_insights(time_window),
    }

    return ApiResponse(data=MonitoringResponse(
        overview=overview,
        performance=performance,
        errors=errors,
        cache=cache_stats,
        database=await _table_counts(db) if details else None,
        system=SystemHealth(
            status=health,
            checks=checks,
            payment_providers=payments.providers,
        ),
        time_window=time_window,
        timestamp=datetime.now(timezone.utc),
    ))


@router.post("")
@limiter.limit("10/minute")
async def monitoring_action(
    request: Request,
    body: MonitoringActionRequest,
    current_admin: Annotated[User, Depends(get_current_admin_user)],
    cache: CacheService = Depends(get_cache),
    tracker: ErrorTracker = Depends(get_error_tracker),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> dict:
    """
    Run a maintenance action.

    - ``resolve``: mark the alert ``alert_id`` resolved
    - ``clear_cache``: drop every cached response
    - ``cleanup_logs``: discard samples older than the retention period
    """
    if body.action not in ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action",
        )

    if body.action == "resolve":
        if not body.alert_id or not tracker.resolve_alert(body.alert_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Alert not found",
            )
        logger.info("Alert %s resolved by %s", body.alert_id, current_admin.id)
        return {"success": True, "message": "Alert resolved"}

    if body.action == "clear_cache":
        removed = await cache.clear()
        logger.info("Cache cleared by %s (%d entries)", current_admin.id, removed)
        return {"success": True, "message": "Cache cleared", "removed": removed}

    retention_ms = settings.monitoring_retention_hours * HOUR_MS
    errors_removed = tracker.cleanup(retention_ms)
    samples_removed = monitor.cleanup(retention_ms)
    logger.info("Monitoring buffers cleaned by %s", current_admin.id)
    return {
        "success": True,
        "message": "Old monitoring data removed",
        "removed": {**errors_removed, "samples_removed": samples_removed},
    }
