"""
In-process monitoring: error tracking, request/DB timing and threshold alerts.

Both trackers keep bounded ring buffers (``collections.deque`` with
``maxlen``), so the oldest entries are dropped once capacity is reached.
Nothing is persisted and nothing is shared between worker processes; a
restart starts from empty buffers.

The application owns one instance of each tracker on ``app.state`` and
routes obtain them through the ``get_error_tracker`` and
``get_performance_monitor`` dependencies, so tests can swap in fresh
instances.

Usage::

    tracker = ErrorTracker()
    error_id = tracker.log_error(exc, metadata={"path": "/api/v1/orders"})
    tracker.get_error_stats(window_ms=3_600_000)

    monitor = PerformanceMonitor()
    with monitor.measure("render_invoice"):
        ...
"""

import logging
import math
import re
import time
import traceback
from collections import Counter, defaultdict, deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})

CONNECTION_REFUSED_MARKERS = ("ECONNREFUSED", "ConnectionRefusedError", "Connection refused")

# Pattern name -> (regex, threshold above which a recommendation is issued, recommendation)
INSIGHT_PATTERNS: dict[str, tuple[re.Pattern, int, str]] = {
    "slow_queries": (
        re.compile(r"timeout|slow", re.IGNORECASE),
        10,
        "Frequent slow operations or timeouts: review query plans and add indexes",
    ),
    "memory_issues": (
        re.compile(r"memory|heap", re.IGNORECASE),
        5,
        "Memory related errors detected: check for oversized payloads or leaks",
    ),
    "network_issues": (
        re.compile(r"ECONNREFUSED|ETIMEDOUT|network", re.IGNORECASE),
        15,
        "Network errors are frequent: check connectivity to external services",
    ),
    "validation_errors": (
        re.compile(r"validation|invalid", re.IGNORECASE),
        20,
        "Many validation failures: tighten client-side checks and API documentation",
    ),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=UTC).isoformat()


def percentile(values: list[float], p: float) -> float:
    """Nearest-rank percentile; 0 for an empty sample."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(0, math.ceil(len(ordered) * p) - 1)
    return ordered[index]


def _avg(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


# ── Records ──────────────────────────────────────────────────────────────────


@dataclass
class ErrorEntry:
    id: str
    message: str
    level: str
    timestamp: int
    stack: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> Optional[str]:
        return self.context.get("path") or self.metadata.get("path")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data


@dataclass
class Alert:
    id: str
    type: str
    severity: str
    message: str
    first_seen: int
    last_seen: int
    count: int = 1
    resolved: bool = False
    resolved_at: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "count": self.count,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at) if self.resolved_at else None,
        }


@dataclass
class MetricEntry:
    name: str
    value: float
    timestamp: int
    tags: dict[str, Any] = field(default_factory=dict)


@dataclass
class RequestEntry:
    method: str
    path: str
    status_code: int
    duration_ms: float
    timestamp: int
    user_id: Optional[str] = None


@dataclass
class QueryEntry:
    query: str
    duration_ms: float
    timestamp: int
    cached: Optional[bool] = None


# ── Error tracker ────────────────────────────────────────────────────────────


class ErrorTracker:
    """Bounded log of application errors with rule-based alerting."""

    def __init__(
        self,
        max_errors: int = 1000,
        max_alerts: int = 100,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._errors: deque[ErrorEntry] = deque(maxlen=max_errors)
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._clock = clock

    # ── Recording ────────────────────────────────────────────────────────────

    def log_error(
        self,
        error: BaseException | str,
        level: str = "error",
        metadata: Optional[dict[str, Any]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Record an error and evaluate alert rules.

        Args:
            error: Exception instance or plain message
            level: "error", "warning" or "info"
            metadata: Free-form details (for example ``path`` or ``provider``)
            context: Request context, see ``log_request_error``

        Returns:
            The id assigned to the error entry
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = str(error)
            stack = None

        entry = ErrorEntry(
            id=uuid4().hex,
            message=message,
            level=level,
            timestamp=self._clock(),
            stack=stack,
            metadata=dict(metadata or {}),
            context=dict(context or {}),
        )
        self._errors.append(entry)
        self._check_alerts(entry)
        return entry.id

    def log_request_error(
        self,
        error: BaseException | str,
        request: Request,
        level: str = "error",
        user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Record an error with sanitized request context."""
        context = {
            "method": request.method,
            "path": request.url.path,
            "query": str(request.url.query) or None,
            "ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
            "user_id": user_id,
            "headers": {
                k: v for k, v in request.headers.items() if k.lower() not in SENSITIVE_HEADERS
            },
        }
        return self.log_error(error, level=level, metadata=metadata, context=context)

    # ── Alerting ─────────────────────────────────────────────────────────────

    def _raise_alert(self, alert_type: str, severity: str, message: str) -> Alert:
        now = self._clock()
        for alert in self._alerts:
            if not alert.resolved and alert.type == alert_type and alert.message == message:
                alert.count += 1
                alert.last_seen = now
                return alert

        alert = Alert(
            id=uuid4().hex,
            type=alert_type,
            severity=severity,
            message=message,
            first_seen=now,
            last_seen=now,
        )
        self._alerts.append(alert)
        logger.warning("Monitoring alert [%s/%s]: %s", alert_type, severity, message)
        return alert

    def _errors_since(self, since_ms: int) -> list[ErrorEntry]:
        return [e for e in self._errors if e.timestamp >= since_ms]

    @staticmethod
    def _is_auth_failure(entry: ErrorEntry) -> bool:
        lowered = entry.message.lower()
        return "authentication" in lowered or "unauthorized" in lowered

    def _check_alerts(self, entry: ErrorEntry) -> None:
        now = self._clock()

        last_hour = len(self._errors_since(now - HOUR_MS))
        if last_hour > 50:
            self._raise_alert(
                "error_rate", "high", f"High error rate: {last_hour} errors in the last hour"
            )

        if entry.level == "error":
            haystack = f"{entry.stack or ''}\n{entry.message}"
            if any(marker in haystack for marker in CONNECTION_REFUSED_MARKERS):
                self._raise_alert("system", "critical", "Database connection failed")

            if entry.path and "/payments" in entry.path:
                self._raise_alert("error_rate", "high", "Payment processing error detected")

        if self._is_auth_failure(entry):
            recent = [
                e for e in self._errors_since(now - 15 * 60 * 1000) if self._is_auth_failure(e)
            ]
            if len(recent) > 10:
                self._raise_alert(
                    "security",
                    "medium",
                    f"Repeated authentication failures: {len(recent)} in the last 15 minutes",
                )

    def get_alerts(self, include_resolved: bool = False) -> list[dict[str, Any]]:
        return [
            a.to_dict() for a in self._alerts if include_resolved or not a.resolved
        ]

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark an alert resolved. Returns False if the id is unknown."""
        for alert in self._alerts:
            if alert.id == alert_id:
                if not alert.resolved:
                    alert.resolved = True
                    alert.resolved_at = self._clock()
                return True
        return False

    # ── Reporting ────────────────────────────────────────────────────────────

    def get_error_stats(self, window_ms: int = HOUR_MS) -> dict[str, Any]:
        """Aggregate errors recorded within the last ``window_ms`` milliseconds."""
        errors = self._errors_since(self._clock() - window_ms)
        by_path = Counter(e.path for e in errors if e.path)
        minutes = window_ms / 60000

        return {
            "total": len(errors),
            "by_level": dict(Counter(e.level for e in errors)),
            "by_path": dict(by_path),
            "recent_errors": [e.to_dict() for e in reversed(errors[-20:])],
            "error_rate": round(len(errors) / minutes, 2) if minutes else 0.0,
        }

    def get_performance_insights(self, window_ms: int = DAY_MS) -> dict[str, Any]:
        """Classify recent errors by message pattern and suggest follow-ups."""
        errors = self._errors_since(self._clock() - window_ms)
        patterns = {
            name: sum(1 for e in errors if regex.search(e.message))
            for name, (regex, _, _) in INSIGHT_PATTERNS.items()
        }
        recommendations = [
            advice
            for name, (_, threshold, advice) in INSIGHT_PATTERNS.items()
            if patterns[name] > threshold
        ]
        return {
            "total_errors": len(errors),
            "patterns": patterns,
            "recommendations": recommendations,
        }

    def export_errors(self, window_ms: Optional[int] = None) -> list[dict[str, Any]]:
        if window_ms is None:
            return [e.to_dict() for e in self._errors]
        return [e.to_dict() for e in self._errors_since(self._clock() - window_ms)]

    # ── Housekeeping ─────────────────────────────────────────────────────────

    def cleanup(self, max_age_ms: int = DAY_MS) -> dict[str, int]:
        """Drop errors and alerts older than ``max_age_ms``."""
        cutoff = self._clock() - max_age_ms
        errors_before, alerts_before = len(self._errors), len(self._alerts)

        kept_errors = [e for e in self._errors if e.timestamp >= cutoff]
        kept_alerts = [a for a in self._alerts if a.last_seen >= cutoff]
        self._errors.clear()
        self._errors.extend(kept_errors)
        self._alerts.clear()
        self._alerts.extend(kept_alerts)

        return {
            "errors_removed": errors_before - len(kept_errors),
            "alerts_removed": alerts_before - len(kept_alerts),
        }

    def reset(self) -> None:
        self._errors.clear()
        self._alerts.clear()

    def __len__(self) -> int:
        return len(self._errors)


# ── Performance monitor ──────────────────────────────────────────────────────


class PerformanceMonitor:
    """Bounded samples of request, database and custom metric timings."""

    def __init__(self, max_entries: int = 1000, clock: Callable[[], int] = _now_ms) -> None:
        self._metrics: deque[MetricEntry] = deque(maxlen=max_entries)
        self._requests: deque[RequestEntry] = deque(maxlen=max_entries)
        self._db_queries: deque[QueryEntry] = deque(maxlen=max_entries)
        self._clock = clock

    def record_metric(self, name: str, value: float, tags: Optional[dict[str, Any]] = None) -> None:
        self._metrics.append(MetricEntry(name, float(value), self._clock(), dict(tags or {})))

    def record_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        user_id: Optional[str] = None,
    ) -> None:
        self._requests.append(
            RequestEntry(method.upper(), path, status_code, float(duration_ms), self._clock(), user_id)
        )

    def record_db_query(
        self, query: str, duration_ms: float, cached: Optional[bool] = None
    ) -> None:
        """Record a query. ``cached`` is set only for lookups that went through the cache."""
        self._db_queries.append(QueryEntry(query, float(duration_ms), self._clock(), cached))

    @contextmanager
    def measure(self, name: str, tags: Optional[dict[str, Any]] = None) -> Iterator[None]:
        """Record the wall time of the wrapped block as metric ``name`` (ms)."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_metric(name, (time.perf_counter() - start) * 1000, tags)

    # ── Aggregation ──────────────────────────────────────────────────────────

    def _request_stats(self, requests: list[RequestEntry]) -> dict[str, Any]:
        durations = [r.duration_ms for r in requests]
        failed = sum(1 for r in requests if r.status_code >= 400)

        endpoints: dict[str, list[RequestEntry]] = defaultdict(list)
        for r in requests:
            endpoints[f"{r.method} {r.path}"].append(r)

        slowest = sorted(
            (
                {
                    "endpoint": key,
                    "average_time": _avg([r.duration_ms for r in entries]),
                    "count": len(entries),
                    "error_rate": round(
                        sum(1 for r in entries if r.status_code >= 400) / len(entries) * 100, 2
                    ),
                }
                for key, entries in endpoints.items()
            ),
            key=lambda item: item["average_time"],
            reverse=True,
        )[:10]

        return {
            "total": len(requests),
            "average_response_time": _avg(durations),
            "error_rate": round(failed / len(requests) * 100, 2) if requests else 0.0,
            "requests_per_minute": round(len(requests) / 60, 2),
            "slowest_endpoints": slowest,
            "status_codes": {
                str(code): count
                for code, count in sorted(Counter(r.status_code for r in requests).items())
            },
            "p95": percentile(durations, 0.95),
            "p99": percentile(durations, 0.99),
        }

    @staticmethod
    def _metric_stats(metrics: list[MetricEntry]) -> dict[str, Any]:
        grouped: dict[str, list[float]] = defaultdict(list)
        for m in metrics:
            grouped[m.name].append(m.value)

        return {
            name: {
                "count": len(values),
                "average": _avg(values),
                "min": min(values),
                "max": max(values),
                "p95": percentile(values, 0.95),
                "p99": percentile(values, 0.99),
            }
            for name, values in grouped.items()
        }

    @staticmethod
    def _database_stats(queries: list[QueryEntry]) -> dict[str, Any]:
        durations = [q.duration_ms for q in queries]
        lookups = [q for q in queries if q.cached is not None]
        hits = sum(1 for q in lookups if q.cached)
        slowest = sorted(queries, key=lambda q: q.duration_ms, reverse=True)[:10]

        return {
            "total": len(queries),
            "average_duration": _avg(durations),
            "cache_lookups": len(lookups),
            "cache_hit_rate": round(hits / len(lookups) * 100, 2) if lookups else 0.0,
            "slowest_queries": [
                {
                    "query": q.query[:100] + "..." if len(q.query) > 100 else q.query,
                    "duration": round(q.duration_ms, 2),
                    "timestamp": _iso(q.timestamp),
                }
                for q in slowest
            ],
            "p95": percentile(durations, 0.95),
            "p99": percentile(durations, 0.99),
        }

    def get_stats(self, window_ms: int = HOUR_MS) -> dict[str, Any]:
        """Summaries of everything recorded within the last ``window_ms``."""
        now = self._clock()
        since = now - window_ms
        return {
            "requests": self._request_stats([r for r in self._requests if r.timestamp >= since]),
            "performance": self._metric_stats([m for m in self._metrics if m.timestamp >= since]),
            "database": self._database_stats([q for q in self._db_queries if q.timestamp >= since]),
            "time_window": window_ms,
            "timestamp": _iso(now),
        }

    def get_alerts(self, window_ms: int = HOUR_MS) -> list[dict[str, Any]]:
        """Threshold checks over the current window. Not deduplicated or stored."""
        stats = self.get_stats(window_ms)
        requests, database = stats["requests"], stats["database"]
        alerts = []

        if requests["error_rate"] > 5:
            alerts.append({
                "type": "error_rate",
                "severity": "high",
                "message": f"High error rate: {requests['error_rate']}%",
                "value": requests["error_rate"],
                "threshold": 5,
            })
        if requests["average_response_time"] > 1000:
            alerts.append({
                "type": "slow_response",
                "severity": "medium",
                "message": f"Slow average response time: {requests['average_response_time']}ms",
                "value": requests["average_response_time"],
                "threshold": 1000,
            })
        if database["average_duration"] > 500:
            alerts.append({
                "type": "slow_db",
                "severity": "medium",
                "message": f"Slow database queries: {database['average_duration']}ms average",
                "value": database["average_duration"],
                "threshold": 500,
            })
        if database["cache_lookups"] > 10 and database["cache_hit_rate"] < 70:
            alerts.append({
                "type": "low_cache_hit",
                "severity": "low",
                "message": f"Low cache hit rate: {database['cache_hit_rate']}%",
                "value": database["cache_hit_rate"],
                "threshold": 70,
            })
        return alerts

    def cleanup(self, max_age_ms: int = DAY_MS) -> int:
        """Drop samples older than ``max_age_ms``. Returns the number removed."""
        cutoff = self._clock() - max_age_ms
        removed = 0
        for buffer in (self._metrics, self._requests, self._db_queries):
            kept = [item for item in buffer if item.timestamp >= cutoff]
            removed += len(buffer) - len(kept)
            buffer.clear()
            buffer.extend(kept)
        return removed

    def reset(self) -> None:
        self._metrics.clear()
        self._requests.clear()
        self._db_queries.clear()


# ── Wiring ───────────────────────────────────────────────────────────────────


def instrument_engine(engine: AsyncEngine, monitor: PerformanceMonitor) -> None:
    """Record the duration of every statement executed through ``engine``."""
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start", []).append(time.perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start")
        if starts:
            monitor.record_db_query(statement, (time.perf_counter() - starts.pop()) * 1000)

    @event.listens_for(sync_engine, "handle_error")
    def _failed(context):
        # Failed statements never reach after_cursor_execute
        conn = context.connection
        if conn is not None and conn.info.get("query_start"):
            conn.info["query_start"].pop()


def get_error_tracker(request: Request) -> ErrorTracker:
    """Dependency returning the application's error tracker."""
    return request.app.state.error_tracker


def get_performance_monitor(request: Request) -> PerformanceMonitor:
    """Dependency returning the application's performance monitor."""
    return request.app.state.performance_monitor
