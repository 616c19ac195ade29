"""
Module: observability.py
Description: Logging, timing and metrics for Spend Sentinel.

Features:
    - Structured key=value logging with run context
    - Timing decorator and context manager feeding the metrics collector
    - In-memory counters, gauges and timing histograms served at /metrics

Usage:
    from services.observability import logger, metrics, timed

    @timed("anomaly_detection")
    def run(self):
        logger.info("Scanning users", users=len(baselines))
        ...

Author: Spend Sentinel Team
"""

import time
import logging
import functools
from datetime import datetime, date
from typing import Dict, Any, Optional, Callable
from collections import defaultdict
from contextlib import contextmanager


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Thin wrapper over logging.Logger that appends context fields.

    Context set with set_context() is repeated on every line until
    clear_context() is called, so a detection run can tag all of its
    output with the same run identifier.
    """

    def __init__(self, name: str = "spend-sentinel"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

        self._context: Dict[str, Any] = {}

    def set_context(self, **kwargs) -> None:
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context = {}

    def _format_message(self, message: str, **kwargs) -> str:
        fields = {**self._context, **kwargs}
        if fields:
            field_str = " | ".join(f"{k}={v}" for k, v in fields.items())
            return f"{message} | {field_str}"
        return message

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs) -> None:
        """Log with traceback; call from inside an except block."""
        self.logger.exception(self._format_message(message, **kwargs))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    In-process metrics: counters, gauges and timing samples.

    Values live for the lifetime of the worker process and are reported
    as-is by the /metrics endpoint.
    """

    MAX_SAMPLES = 1000

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, list] = defaultdict(list)
        self._start_time = datetime.utcnow()

    def increment(self, name: str, value: int = 1, tags: Dict[str, str] = None) -> None:
        key = self._make_key(name, tags)
        self.counters[key] += value

    def gauge(self, name: str, value: float, tags: Dict[str, str] = None) -> None:
        key = self._make_key(name, tags)
        self.gauges[key] = value

    def timing(self, name: str, duration_ms: float, tags: Dict[str, str] = None) -> None:
        key = self._make_key(name, tags)
        self.timings[key].append(duration_ms)
        if len(self.timings[key]) > self.MAX_SAMPLES:
            self.timings[key] = self.timings[key][-self.MAX_SAMPLES:]

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()

    def _make_key(self, name: str, tags: Optional[Dict[str, str]] = None) -> str:
        if tags:
            tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
            return f"{name}:{tag_str}"
        return name

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all metrics with timing percentiles."""
        summary = {
            "uptime_seconds": (datetime.utcnow() - self._start_time).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {},
        }

        for name, values in self.timings.items():
            if values:
                ordered = sorted(values)
                summary["timings"][name] = {
                    "count": len(values),
                    "avg_ms": sum(values) / len(values),
                    "min_ms": ordered[0],
                    "max_ms": ordered[-1],
                    "p50_ms": ordered[len(ordered) // 2],
                    "p95_ms": ordered[int(len(ordered) * 0.95)] if len(ordered) >= 20 else None,
                }

        return summary


# =============================================================================
# Timing Decorators
# =============================================================================

def timed(name: str = None):
    """
    Decorator to time a call and count its successes and errors.

    Args:
        name: Metric name (defaults to the function name).

    Example:
        @timed("expense_forecast")
        def forecast(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                metrics.timing(metric_name, duration_ms)
                logger.debug(f"{metric_name} completed", duration_ms=f"{duration_ms:.2f}")

        return wrapper

    return decorator


@contextmanager
def timed_block(name: str):
    """
    Context manager for timing code blocks.

    Example:
        with timed_block("alert_persistence"):
            store.commit()
    """
    start = time.perf_counter()
    try:
        yield
        metrics.increment(f"{name}.success")
    except Exception:
        metrics.increment(f"{name}.error")
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.timing(name, duration_ms)


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger()

metrics = MetricsCollector()


# =============================================================================
# Convenience Functions
# =============================================================================

def log_detection_start(run_id: str, day_rows: int) -> None:
    """Log the start of a detector run."""
    logger.set_context(run_id=run_id)
    logger.info("Anomaly detection started", daily_rows=day_rows)
    metrics.increment("detection.started")


def log_detection_complete(new_alerts: int, candidates: int, users: int) -> None:
    """Log completion of a detector run and drop the run context."""
    logger.info("Anomaly detection completed",
                new_alerts=new_alerts, candidates=candidates, users=users)
    metrics.increment("detection.completed")
    metrics.increment("alerts.created", new_alerts)
    metrics.gauge("detection.last_new_alerts", new_alerts)
    logger.clear_context()


def log_alert_created(user_id: int, day: date, spend: float, z_score: float) -> None:
    logger.info("Alert raised", user_id=user_id, day=day.isoformat(),
                spend=f"${spend:.2f}", z_score=f"{z_score:.2f}")


def log_alert_resolved(alert_id: int, actor_id: int, already_resolved: bool) -> None:
    logger.info("Alert resolved", alert_id=alert_id, actor_id=actor_id,
                already_resolved=already_resolved)
    metrics.increment("alerts.resolved", tags={"noop": str(already_resolved).lower()})


def log_forecast_generated(months: int, slope: float, chart_max: int) -> None:
    logger.info("Expense forecast generated", history_months=months,
                slope=f"{slope:.2f}", chart_max=chart_max)
    metrics.increment("forecast.generated")
