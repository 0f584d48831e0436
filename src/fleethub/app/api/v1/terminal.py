"""Container terminal endpoint.

Relays an operator WebSocket to the interactive shell served by the host
agent of the container's current host. Bytes are passed through as-is.
"""

import asyncio
import contextlib
import logging
from typing import Annotated

import websockets
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.app.config import get_settings
from fleethub.app.metrics.collector import TERMINAL_SESSIONS_ACTIVE
from fleethub.app.terminal import relay_client_to_host, relay_host_to_client
from fleethub.control.orchestrator import Orchestrator, get_orchestrator
from fleethub.core.errors import FleetHubError
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.infra import get_session
from fleethub.services import container_service, host_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["terminal"])

DbSession = Annotated[AsyncSession, Depends(get_session)]
Orch = Annotated[Orchestrator, Depends(get_orchestrator)]

_settings = get_settings()
_terminal_config = _settings.terminal


@router.websocket("/containers/{container_id}/terminal")
async def container_terminal(
    websocket: WebSocket,
    container_id: str,
    db: DbSession,
    orch: Orch,
) -> None:
    try:
        container = await container_service.get_container(db, container_id)
        host = await host_service.get_host(db, container.host_id)
    except FleetHubError as e:
        await websocket.close(code=1008, reason=e.message)
        return

    runtime = orch.runtimes(host)
    upstream_uri = runtime.terminal_url(container.container_name)

    # Connect to the host agent first (before accepting the client)
    try:
        host_ws = await websockets.connect(
            upstream_uri,
            additional_headers=runtime.terminal_headers(),
            open_timeout=_terminal_config.ws_open_timeout,
            ping_interval=_terminal_config.ws_ping_interval,
            ping_timeout=_terminal_config.ws_ping_timeout,
            max_size=_terminal_config.ws_max_size,
        )
    except websockets.InvalidURI as exc:
        logger.warning("Invalid terminal URI for %s: %s", container_id, exc)
        await websocket.close(code=1011, reason="Invalid upstream URI")
        return
    except websockets.InvalidHandshake as exc:
        logger.warning("Terminal handshake failed for %s: %s", container_id, exc)
        await websocket.close(code=1011, reason="Upstream handshake failed")
        return
    except Exception as exc:
        logger.warning("Failed to connect terminal for %s: %s", container_id, exc)
        await websocket.close(code=1011, reason="Upstream connection failed")
        return

    await websocket.accept()
    TERMINAL_SESSIONS_ACTIVE.inc()
    logger.info(
        "Terminal opened",
        extra={
            "event": LogEvent.OPERATION_STARTED,
            "component": Component.TERMINAL,
            "container_id": container_id,
        },
    )

    try:
        async with host_ws:
            try:
                async with asyncio.TaskGroup() as tg:
                    tg.create_task(relay_client_to_host(websocket, host_ws))
                    tg.create_task(relay_host_to_client(websocket, host_ws))
            except* WebSocketDisconnect:
                pass  # Normal client disconnect
            except* websockets.ConnectionClosed:
                pass  # Normal host close
    except Exception as exc:
        logger.error("Terminal relay error for %s: %s", container_id, exc)
    finally:
        TERMINAL_SESSIONS_ACTIVE.dec()
        with contextlib.suppress(Exception):
            await websocket.close()
