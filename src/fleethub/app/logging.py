"""JSON logging configuration with trace/job context and rate limiting."""

import logging
import sys
import time
from collections import defaultdict, deque
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pythonjsonlogger import jsonlogger

from fleethub.app.config import get_settings

# Request scope (set by LoggingMiddleware)
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
# Background job scope (migration/rename tasks copy the context at creation)
job_id_ctx: ContextVar[str | None] = ContextVar("job_id", default=None)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Set trace_id in context, generating one if not provided.

    Returns:
        The trace ID that was set.
    """
    tid = trace_id or str(uuid4())
    trace_id_ctx.set(tid)
    return tid


def set_job_id(job_id: str | None) -> None:
    """Tag every log line of the current task with a job id."""
    job_id_ctx.set(job_id)


def clear_trace_context() -> None:
    """Clear trace context (call at end of request)."""
    trace_id_ctx.set(None)


RATE_WINDOW_SECONDS = 60.0


class RateLimitFilter(logging.Filter):
    """Cap identical non-error records per log site and container.

    A fleet of agents reporting the same problem would otherwise flood
    the log, so each (logger, line, message, container) key is limited to
    rate_per_minute records in a sliding window. One noisy container never
    suppresses the same message for another. The first suppressed record
    of a burst passes with a [RATE LIMITED] prefix. Keys idle for a whole
    window are swept so memory follows the active containers only.
    """

    def __init__(self, rate_per_minute: int = 100, clock=time.monotonic) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._clock = clock
        self._windows: dict[tuple, deque[float]] = defaultdict(deque)
        self._suppressing: set[tuple] = set()
        self._last_sweep = clock()

    def _sweep(self, now: float) -> None:
        """Forget keys whose whole window has expired."""
        self._last_sweep = now
        expired = [
            key
            for key, window in self._windows.items()
            if not window or now - window[-1] >= RATE_WINDOW_SECONDS
        ]
        for key in expired:
            del self._windows[key]
            self._suppressing.discard(key)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = (record.name, record.lineno, record.msg, getattr(record, "container_id", None))
        now = self._clock()
        if now - self._last_sweep >= RATE_WINDOW_SECONDS:
            self._sweep(now)
        window = self._windows[key]
        while window and now - window[0] >= RATE_WINDOW_SECONDS:
            window.popleft()

        if len(window) < self.rate_per_minute:
            window.append(now)
            if len(window) <= self.rate_per_minute // 2:
                self._suppressing.discard(key)
            return True

        if key in self._suppressing:
            return False
        self._suppressing.add(key)
        record.msg = f"[RATE LIMITED] {record.msg} (max {self.rate_per_minute}/min)"
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding schema version, service name and context ids.

    Standard fields: timestamp (ISO 8601 UTC), level, logger, pid,
    schema_version, service, trace_id (request scope), job_id (job scope).
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        settings = get_settings()
        self._schema_version = settings.logging.schema_version
        self._service = settings.logging.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["pid"] = record.process
        log_record["schema_version"] = self._schema_version
        log_record["service"] = self._service

        if trace_id := get_trace_id():
            log_record.setdefault("trace_id", trace_id)
        if job_id := job_id_ctx.get():
            log_record.setdefault("job_id", job_id)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record.pop("color_message", None)


def setup_logging(level: int | None = None) -> None:
    """Configure JSON logging for the application.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL from settings.
    """
    settings = get_settings()

    if level is None:
        level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter())
    handler.addFilter(RateLimitFilter(settings.logging.rate_limit_per_minute))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # uvicorn.access stays off: LoggingMiddleware writes the request line
    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").disabled = True

    # Probe and transfer polling noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
