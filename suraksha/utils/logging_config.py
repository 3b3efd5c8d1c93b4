"""
Structured logging configuration for Suraksha.

JSON log lines in production, a readable single-line format in development,
and an in-process metrics collector that /status reports.
"""

import logging
import sys
import json
import time
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Any, Optional
from functools import wraps
from contextvars import ContextVar

from suraksha.config import settings


# Set per request by the API layer, read by every log line
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "PIL", "python_multipart", "multipart")

LOG_LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the request and session being served."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "environment": settings.environment,
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id
        session_id = session_id_var.get()
        if session_id:
            entry["session_id"] = session_id

        context = getattr(record, "context", None)
        if context:
            entry["data"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Development format: the plain line plus key=value context."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


class StructuredLogger:
    """
    Logger that takes keyword context instead of formatted strings.

    Usage:
        logger = StructuredLogger("suraksha.analysis")
        logger.info("Content analysis completed", source="video", status="FAKE")
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, context: Dict[str, Any]):
        if self._logger.isEnabledFor(level):
            self._logger.log(level, message, extra={"context": context})

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context):
        self._log(logging.ERROR, message, context)


def init_logging():
    """Configure the root logger from settings: JSON and INFO in production, text and DEBUG otherwise."""
    level = logging.INFO if settings.is_production else logging.DEBUG

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextFormatter(LOG_LINE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)


# ============== METRICS ==============


class MetricsCollector:
    """
    Counters and latency samples for analyses, QR decodes and request errors.

    Usage:
        metrics.increment("analysis.url.total")
        metrics.timing("analysis.url.latency", 0.125)
    """

    max_samples = 1000

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._timings: Dict[str, Deque[float]] = {}
        self._start_time = time.time()

    def increment(self, name: str, value: int = 1):
        self._counters[name] = self._counters.get(name, 0) + value

    def timing(self, name: str, value: float):
        self._timings.setdefault(name, deque(maxlen=self.max_samples)).append(value)

    def get_stats(self) -> Dict[str, Any]:
        timing_stats = {}
        for name, samples in self._timings.items():
            ordered = sorted(samples)
            timing_stats[name] = {
                "count": len(ordered),
                "avg": sum(ordered) / len(ordered),
                "p50": ordered[len(ordered) // 2],
                "max": ordered[-1],
            }

        return {
            "uptime_seconds": time.time() - self._start_time,
            "counters": self._counters.copy(),
            "timings": timing_stats,
        }

    def reset(self):
        self._counters.clear()
        self._timings.clear()


# Global metrics instance
metrics = MetricsCollector()


# ============== DECORATORS ==============


def timed_step(step: str):
    """Log how long a blocking media step took and record it as `pipeline.<step>.latency`."""
    logger = StructuredLogger(f"suraksha.{step}")

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"{step} failed",
                    duration_ms=round((time.time() - start) * 1000, 2),
                    error=str(e),
                )
                raise
            duration = time.time() - start
            logger.info(f"{step} completed", duration_ms=round(duration * 1000, 2))
            metrics.timing(f"pipeline.{step}.latency", duration)
            return result

        return wrapper

    return decorator


def _verdict_label(result: Any) -> str:
    status = getattr(result, "information_status", None) or getattr(result, "safety_status", None)
    if status is None:
        return "unknown"
    return str(getattr(status, "value", status)).lower()


def track_analysis(modality: str):
    """Decorator to count analyses, their latency, and the verdicts they produce."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            metrics.increment(f"analysis.{modality}.total")
            start = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                metrics.increment(f"analysis.{modality}.errors.{type(e).__name__}")
                raise
            metrics.timing(f"analysis.{modality}.latency", time.time() - start)
            metrics.increment(f"analysis.{modality}.status.{_verdict_label(result)}")
            return result

        return wrapper

    return decorator
