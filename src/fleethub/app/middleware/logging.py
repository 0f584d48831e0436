"""Request logging middleware.

Provides canonical log line per request with trace ID propagation.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from fleethub.app.config import get_settings
from fleethub.app.logging import clear_trace_context, set_trace_id
from fleethub.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from fleethub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)
_settings = get_settings()
_logging_config = _settings.logging

# Path normalization patterns (replace dynamic IDs with placeholders)
_PATH_PATTERNS = [
    (
        re.compile(r"^/api/v1/containers/[0-9A-Za-z]+(?=/|$)"),
        "/api/v1/containers/:id",
    ),
    (
        re.compile(r"^/api/v1/containers/:id/services/[a-z_]+/"),
        "/api/v1/containers/:id/services/:component/",
    ),
    (re.compile(r"^/api/v1/hosts/[0-9A-Za-z]+(?=/|$)"), "/api/v1/hosts/:id"),
]

# Whitelist of known endpoints for metrics (cardinality control)
_KNOWN_ENDPOINTS = frozenset({
    # Containers
    "/api/v1/containers",
    "/api/v1/containers/:id",
    "/api/v1/containers/:id/enabled",
    "/api/v1/containers/:id/redeploy",
    "/api/v1/containers/:id/start",
    "/api/v1/containers/:id/stop",
    "/api/v1/containers/:id/services/:component/start",
    "/api/v1/containers/:id/services/:component/stop",
    "/api/v1/containers/:id/stack/start",
    "/api/v1/containers/:id/stack/stop",
    "/api/v1/containers/:id/migrate",
    "/api/v1/containers/:id/migrate/cancel",
    "/api/v1/containers/:id/migrate/status",
    "/api/v1/containers/:id/rename",
    "/api/v1/containers/:id/rename/status",
    # Hosts
    "/api/v1/hosts",
    "/api/v1/hosts/:id",
    "/api/v1/hosts/:id/containers",
    # SSE
    "/api/v1/events",
})

_SKIP_PATHS = ("/health", "/metrics")

# Long-lived streams; their duration says nothing about latency
_STREAM_ENDPOINTS = frozenset({"/api/v1/events"})

_RESOURCE_ID = re.compile(r"^/api/v1/(containers|hosts)/([0-9A-Za-z]+)(?=/|$)")


def _normalize_path(path: str) -> str:
    """Normalize path and apply whitelist for cardinality control."""
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path if path in _KNOWN_ENDPOINTS else "other"


def _resource_fields(path: str) -> dict[str, str]:
    """container_id/host_id addressed by the path, for log correlation."""
    match = _RESOURCE_ID.match(path)
    if match is None:
        return {}
    kind, resource_id = match.groups()
    return {"container_id" if kind == "containers" else "host_id": resource_id}


class LoggingMiddleware(BaseHTTPMiddleware):
    """One canonical log line and metrics sample per request.

    The trace id comes from X-Trace-ID (or is generated) and is echoed in
    the response. Requests addressing a container or host carry its id in
    the log line.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        path = request.url.path
        fields = {
            "method": request.method,
            "path": path,
            "trace_id": trace_id,
            **_resource_fields(path),
        }

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "duration_ms": (time.monotonic() - start) * 1000,
                    **fields,
                },
            )
            raise
        finally:
            clear_trace_context()

        duration_seconds = time.monotonic() - start
        duration_ms = duration_seconds * 1000

        if path not in _SKIP_PATHS:
            endpoint = _normalize_path(path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            HTTP_REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                duration_seconds
            )

            fields.update(status=response.status_code, duration_ms=duration_ms)
            logger.info("Request completed", extra={"event": LogEvent.REQUEST_COMPLETE, **fields})

            threshold_ms = _logging_config.slow_threshold_ms
            if duration_ms > threshold_ms and endpoint not in _STREAM_ENDPOINTS:
                logger.warning(
                    "Slow request detected",
                    extra={"event": LogEvent.REQUEST_SLOW, "threshold_ms": threshold_ms, **fields},
                )

        response.headers["X-Trace-ID"] = trace_id
        return response
