"""
Database Performance Monitoring for the Electricity Billing Service

This module provides:
- Query timing context manager for slow query detection
- Prometheus metrics for query timing and user ID allocation
- Database health check with connection pool statistics

Usage:
    from database.monitoring import query_timer, get_db_metrics

    with query_timer("users.max_suffix"):
        current = repo.max_suffix("USER")
"""

import logging
import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import Optional, Dict, Any, List, Callable

from prometheus_client import Histogram, Counter
from sqlalchemy import text

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class MonitoringConfig:
    """Configuration for database monitoring."""
    slow_query_threshold_ms: float = 1000.0  # Log queries slower than this
    warning_threshold_ms: float = 500.0       # Info-log queries slower than this
    enable_prometheus: bool = True
    enable_logging: bool = True


_config = MonitoringConfig()


def configure_monitoring(
    slow_query_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_prometheus: bool = True,
    enable_logging: bool = True
) -> None:
    """
    Configure monitoring settings.

    Args:
        slow_query_threshold_ms: Log queries slower than this (ms)
        warning_threshold_ms: Info-log queries slower than this (ms)
        enable_prometheus: Enable Prometheus metrics
        enable_logging: Enable logging
    """
    global _config
    _config = MonitoringConfig(
        slow_query_threshold_ms=slow_query_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_prometheus=enable_prometheus,
        enable_logging=enable_logging
    )


# ============================================
# PROMETHEUS METRICS
# ============================================

db_query_duration = Histogram(
    'ebilling_db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

db_slow_queries_total = Counter(
    'ebilling_db_slow_queries_total',
    'Total number of slow database queries',
    ['operation']
)

user_registrations_total = Counter(
    'ebilling_user_registrations_total',
    'User registration attempts by final outcome',
    ['outcome']
)

id_collisions_total = Counter(
    'ebilling_id_collisions_total',
    'Primary key collisions detected while inserting a freshly allocated user ID'
)


def record_registration(outcome: str) -> None:
    """Count a finished registration by outcome name (created, conflict, ...)."""
    if _config.enable_prometheus:
        user_registrations_total.labels(outcome=outcome).inc()


def record_id_collision() -> None:
    """Count one lost allocation race."""
    if _config.enable_prometheus:
        id_collisions_total.inc()


# ============================================
# QUERY STATS TRACKING
# ============================================

@dataclass
class QueryStats:
    """Statistics for a single query type."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow_queries: int = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count else 0.0

    def record(self, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        if error:
            self.errors += 1
        if slow:
            self.slow_queries += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.avg_time_ms, 2),
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_queries': self.slow_queries,
        }


class QueryStatsCollector:
    """Thread-safe collector for query statistics."""

    def __init__(self):
        self._stats: Dict[str, QueryStats] = {}
        self._lock = threading.Lock()
        self._start_time = datetime.now()

    def record(self, operation: str, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        """Record a query execution."""
        with self._lock:
            if operation not in self._stats:
                self._stats[operation] = QueryStats(operation=operation)
            self._stats[operation].record(duration_ms, error, slow)

    def get_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Get query statistics."""
        with self._lock:
            if operation:
                stat = self._stats.get(operation)
                return stat.to_dict() if stat else {}

            return {
                'uptime_seconds': (datetime.now() - self._start_time).total_seconds(),
                'operations': {
                    op: stats.to_dict() for op, stats in self._stats.items()
                }
            }

    def get_slow_queries(self) -> List[Dict[str, Any]]:
        """Get operations with slow queries."""
        with self._lock:
            return [
                stats.to_dict()
                for stats in self._stats.values()
                if stats.slow_queries > 0
            ]

    def reset(self) -> None:
        """Reset all statistics."""
        with self._lock:
            self._stats.clear()
            self._start_time = datetime.now()


_stats_collector = QueryStatsCollector()


def get_db_metrics() -> Dict[str, Any]:
    """Get current query statistics."""
    return _stats_collector.get_stats()


def get_slow_query_report() -> List[Dict[str, Any]]:
    """Get operations that had at least one slow query."""
    return _stats_collector.get_slow_queries()


def reset_metrics() -> None:
    """Reset all collected query statistics."""
    _stats_collector.reset()


# ============================================
# QUERY TIMER
# ============================================

@contextmanager
def query_timer(operation: str):
    """
    Context manager to time and monitor database queries.

    Args:
        operation: Name of the operation (e.g., 'users.max_suffix')
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

        is_slow = duration_ms > _config.slow_query_threshold_ms
        is_warning = duration_ms > _config.warning_threshold_ms

        _stats_collector.record(
            operation=operation,
            duration_ms=duration_ms,
            error=error_occurred,
            slow=is_slow
        )

        if _config.enable_prometheus:
            status = "error" if error_occurred else "success"
            db_query_duration.labels(operation=operation, status=status).observe(duration)
            if is_slow:
                db_slow_queries_total.labels(operation=operation).inc()

        if _config.enable_logging:
            if is_slow:
                logger.warning(
                    "SLOW QUERY: %s took %.2fms (threshold: %sms)",
                    operation, duration_ms, _config.slow_query_threshold_ms
                )
            elif is_warning and not error_occurred:
                logger.info("Query %s took %.2fms", operation, duration_ms)


def timed_query(operation: str):
    """
    Decorator to time and monitor database query methods.

    Usage:
        @timed_query("users.max_suffix")
        def max_suffix(self, prefix: str) -> int:
            ...
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

@dataclass
class HealthStatus:
    """Database health status."""
    healthy: bool
    latency_ms: float
    pool_size: int = 0
    pool_checked_out: int = 0
    pool_overflow: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'pool': {
                'size': self.pool_size,
                'checked_out': self.pool_checked_out,
                'overflow': self.pool_overflow
            },
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def _pool_stat(pool, name: str) -> int:
    # Only QueuePool exposes size/checkedout/overflow
    getter = getattr(pool, name, None)
    return int(getter()) if callable(getter) else 0


def check_health(engine, session_factory) -> HealthStatus:
    """
    Perform database health check.

    Never raises: failures are reported in the returned HealthStatus.
    """
    start_time = time.perf_counter()

    try:
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
            latency = (time.perf_counter() - start_time) * 1000
            pool = engine.pool
            return HealthStatus(
                healthy=True,
                latency_ms=latency,
                pool_size=_pool_stat(pool, "size"),
                pool_checked_out=_pool_stat(pool, "checkedout"),
                pool_overflow=_pool_stat(pool, "overflow")
            )
        finally:
            session.close()

    except Exception as e:
        latency = (time.perf_counter() - start_time) * 1000
        logger.error("Database health check failed: %s", e)
        return HealthStatus(
            healthy=False,
            latency_ms=latency,
            error=type(e).__name__
        )
