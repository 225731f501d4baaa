"""
Monitoring for the ANPR Event Service

Prometheus metrics for ingestion (events stored, list hits, purged events)
and for the repository layer (operation latency, slow operations), plus the
database health probe used by /api/v1/health.

Usage:
    from database.monitoring import timed_query

    @timed_query("find_events")
    def find(self, ...):
        ...
"""

import os
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy import text

logger = logging.getLogger(__name__)

# Repository calls slower than this are logged and counted
SLOW_OPERATION_MS = float(os.getenv("DB_SLOW_QUERY_MS", "1000"))


# ============================================
# PROMETHEUS METRICS
# ============================================

events_ingested_total = Counter(
    'anpr_events_ingested_total',
    'ANPR events stored, by webhook source',
    ['source']
)

list_hits_total = Counter(
    'anpr_list_hits_total',
    'Ingested events whose plate was on a list, by list type',
    ['list_type']
)

events_purged_total = Counter(
    'anpr_events_purged_total',
    'Events removed by the retention purge'
)

db_query_duration = Histogram(
    'anpr_db_query_duration_seconds',
    'Repository operation duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

db_query_total = Counter(
    'anpr_db_query_total',
    'Repository operations executed',
    ['operation', 'status']
)

db_pool_checked_out = Gauge(
    'anpr_db_pool_checked_out',
    'Connections currently checked out of the pool'
)


def record_ingestion(source: str) -> None:
    """Count one stored event from ``source`` ('json' or 'hikvision')."""
    events_ingested_total.labels(source=source).inc()


def record_list_hits(list_types: Iterable[str]) -> None:
    for list_type in list_types:
        list_hits_total.labels(list_type=list_type).inc()


def record_purge(deleted: int) -> None:
    if deleted > 0:
        events_purged_total.inc(deleted)


# ============================================
# SLOW OPERATION TRACKING
# ============================================

@dataclass
class OperationStats:
    """Running totals for one repository operation."""
    count: int = 0
    errors: int = 0
    slow: int = 0
    total_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'errors': self.errors,
            'slow': self.slow,
            'avg_ms': round(self.total_ms / self.count, 2) if self.count else 0.0,
        }


class OperationStatsCollector:
    """Thread-safe per-operation totals."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, error: bool, slow: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_ms += duration_ms
            stats.errors += int(error)
            stats.slow += int(slow)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {op: stats.to_dict() for op, stats in self._stats.items()}

    def slow_operations(self) -> List[str]:
        with self._lock:
            return sorted(op for op, stats in self._stats.items() if stats.slow)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_collector = OperationStatsCollector()


def get_operation_stats() -> Dict[str, Dict[str, Any]]:
    """Per-operation totals since start (or the last reset)."""
    return _collector.snapshot()


def get_slow_operations() -> List[str]:
    """Names of operations that exceeded the slow threshold at least once."""
    return _collector.slow_operations()


def reset_operation_stats() -> None:
    _collector.reset()


@contextmanager
def query_timer(operation: str):
    """
    Time a repository operation and record it.

    Args:
        operation: Name of the operation (e.g., 'get_or_create_plate')
    """
    start_time = time.perf_counter()
    error_occurred = False

    try:
        yield
    except Exception:
        error_occurred = True
        raise
    finally:
        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000
        is_slow = duration_ms > SLOW_OPERATION_MS

        _collector.record(operation, duration_ms, error_occurred, is_slow)

        status = "error" if error_occurred else "success"
        db_query_duration.labels(operation=operation, status=status).observe(duration)
        db_query_total.labels(operation=operation, status=status).inc()

        if is_slow:
            logger.warning(
                "Slow database operation: %s took %.2fms (threshold: %sms)",
                operation, duration_ms, SLOW_OPERATION_MS
            )


def timed_query(operation: str):
    """
    Decorator form of query_timer for repository methods.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator


# ============================================
# HEALTH CHECK
# ============================================

def _pool_counts(engine) -> Dict[str, int]:
    """Read pool counters; pools without sizing (e.g. SQLite) report zeros."""
    pool = engine.pool
    counts = {}
    for key, attr in (('size', 'size'), ('checked_out', 'checkedout'), ('overflow', 'overflow')):
        reader = getattr(pool, attr, None)
        counts[key] = reader() if callable(reader) else 0
    return counts


@dataclass
class HealthStatus:
    """Database health status."""
    healthy: bool
    latency_ms: float
    pool: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'pool': dict(self.pool),
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def check_health(engine, session_factory) -> HealthStatus:
    """
    Run ``SELECT 1`` and report latency and pool usage.

    Never raises; failures are reported in the returned status.
    """
    start_time = time.perf_counter()
    session = None
    try:
        session = session_factory()
        session.execute(text("SELECT 1"))
        latency = (time.perf_counter() - start_time) * 1000

        counts = _pool_counts(engine)
        db_pool_checked_out.set(counts['checked_out'])
        return HealthStatus(healthy=True, latency_ms=latency, pool=counts)

    except Exception as e:
        latency = (time.perf_counter() - start_time) * 1000
        logger.error("Database health check failed: %s", e)
        return HealthStatus(healthy=False, latency_ms=latency, error=str(e))
    finally:
        if session is not None:
            session.close()
