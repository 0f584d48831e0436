"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fleethub import __version__
from fleethub.app.api.v1 import (
    agents_router,
    containers_router,
    events_router,
    hosts_router,
    terminal_router,
)
from fleethub.app.config import get_settings
from fleethub.app.logging import setup_logging
from fleethub.app.metrics import get_metrics_response
from fleethub.app.metrics.collector import POSTGRESQL_POOL_ACTIVE, POSTGRESQL_POOL_IDLE
from fleethub.app.middleware.logging import LoggingMiddleware
from fleethub.control.orchestrator import close_orchestrator, get_orchestrator, init_orchestrator
from fleethub.control.recovery import startup_recovery
from fleethub.core.errors import FleetHubError
from fleethub.core.logging_schema import LogEvent
from fleethub.hostagent.client import HostAgentPool
from fleethub.infra import (
    ChannelPublisher,
    EventBus,
    close_db,
    close_redis,
    get_redis,
    get_session_factory,
    init_db,
    init_redis,
    ping_db,
    pool_usage,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()

    await init_db()
    await init_redis()

    events = EventBus(
        ChannelPublisher(get_redis()),
        settings.redis_channel.events,
        maxsize=settings.event_bus.queue_maxsize,
    )
    pool = HostAgentPool()
    session_factory = get_session_factory()

    # Jobs cut short by the previous process must be visible before the API serves
    await startup_recovery(session_factory, events)

    orchestrator = init_orchestrator(session_factory, events, pool)
    orchestrator.start()

    logger.info("Starting application", extra={"event": LogEvent.APP_STARTED})

    metrics_task = None
    if settings.metrics.enabled:
        metrics_task = asyncio.create_task(_metrics_updater_loop())

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    if metrics_task is not None:
        metrics_task.cancel()
        try:
            await metrics_task
        except asyncio.CancelledError:
            pass

    await close_orchestrator()
    await pool.close()
    await close_redis()
    await close_db()


app = FastAPI(title="FleetHub", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(FleetHubError)
async def fleethub_error_handler(request: Request, exc: FleetHubError) -> JSONResponse:
    """Handle FleetHubError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


app.include_router(containers_router, prefix="/api/v1")
app.include_router(hosts_router, prefix="/api/v1")
app.include_router(events_router, prefix="/api/v1")
app.include_router(agents_router, prefix="/api/v1")
app.include_router(terminal_router, prefix="/api/v1")


async def _check_service(check_fn: callable) -> str:
    """Check service health and return status string."""
    try:
        await check_fn()
        return "connected"
    except RuntimeError:
        return "not initialized"
    except Exception as e:
        return f"error: {e}"


async def _check_redis() -> None:
    redis_client = get_redis()
    await redis_client.ping()


def _fleet_summary() -> dict[str, int] | None:
    try:
        orch = get_orchestrator()
    except RuntimeError:
        return None
    return {
        "agent_sessions": len(orch.registry.sessions()),
        "active_jobs": len(orch.jobs.active_jobs()),
    }


@app.get("/health")
async def health():
    results = await asyncio.gather(
        _check_service(ping_db),
        _check_service(_check_redis),
    )

    services = {
        "postgres": results[0],
        "redis": results[1],
    }

    is_degraded = any(s != "connected" for s in services.values())

    return {
        "status": "degraded" if is_degraded else "ok",
        "version": __version__,
        "services": services,
        "fleet": _fleet_summary(),
    }


def _update_postgresql_pool_metrics() -> None:
    """Update PostgreSQL pool metrics."""
    try:
        idle, active = pool_usage()
    except RuntimeError:
        idle, active = 0, 0
    POSTGRESQL_POOL_IDLE.set(idle)
    POSTGRESQL_POOL_ACTIVE.set(active)


async def _metrics_updater_loop() -> None:
    """Update pool metrics periodically in background.

    Interval is configured via METRICS_UPDATE_INTERVAL.
    """
    interval = get_settings().metrics.update_interval
    while True:
        _update_postgresql_pool_metrics()
        await asyncio.sleep(interval)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not get_settings().metrics.enabled:
        return Response(status_code=404)
    return get_metrics_response()
