"""Agent WebSocket endpoint.

Each in-container agent keeps one WebSocket open. The first frame must be
``auth``; afterwards a reader task feeds inbound frames to the registry
and a writer task drains the session outbox. A ``shutdown`` message
closes the connection after it is sent.
"""

import asyncio
import contextlib
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from fleethub.app.config import get_settings
from fleethub.control.orchestrator import Orchestrator, get_orchestrator
from fleethub.control.registry import AgentSession, AgentSessionRegistry
from fleethub.core.errors import UnauthorizedError
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.protocol import AuthMessage, AuthResultMessage, ShutdownMessage, parse_agent_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agents"])

_settings = get_settings()

Orch = Annotated[Orchestrator, Depends(get_orchestrator)]

# Application-defined close codes (4000-4999)
CLOSE_UNAUTHORIZED = 4401
CLOSE_SHUTDOWN = 4000


async def _authenticate(websocket: WebSocket, registry: AgentSessionRegistry) -> AgentSession | None:
    try:
        raw = await asyncio.wait_for(websocket.receive_text(), timeout=_settings.agent.auth_timeout)
        message = parse_agent_message(raw)
        if not isinstance(message, AuthMessage):
            raise UnauthorizedError("First frame must be auth")
        container = await registry.authenticate(message)
    except (TimeoutError, ValidationError, UnauthorizedError) as e:
        reason = "Authentication timed out" if isinstance(e, TimeoutError) else "Authentication failed"
        logger.warning(
            "Agent rejected: %s",
            reason,
            extra={"event": LogEvent.AGENT_AUTH_FAILED, "component": Component.REGISTRY},
        )
        with contextlib.suppress(Exception):
            await websocket.send_text(AuthResultMessage(success=False, error=reason).model_dump_json())
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason=reason)
        return None

    await websocket.send_text(AuthResultMessage(success=True).model_dump_json())
    return await registry.register(container, message)


async def _reader(websocket: WebSocket, registry: AgentSessionRegistry, session: AgentSession) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            message = parse_agent_message(raw)
        except ValidationError as e:
            logger.warning(
                "Invalid agent frame: %s",
                e.errors()[0]["msg"] if e.errors() else e,
                extra={"component": Component.REGISTRY, "container_id": session.container_id},
            )
            continue
        await registry.handle_message(session, message)


async def _writer(websocket: WebSocket, session: AgentSession) -> None:
    while True:
        message = await session.outbox.get()
        await websocket.send_text(message.model_dump_json())
        if isinstance(message, ShutdownMessage):
            await websocket.close(code=CLOSE_SHUTDOWN)
            return


@router.websocket("/agents/ws")
async def agent_websocket(websocket: WebSocket, orch: Orch) -> None:
    registry = orch.registry
    await websocket.accept()

    session = await _authenticate(websocket, registry)
    if session is None:
        return

    reader = asyncio.create_task(_reader(websocket, registry, session))
    writer = asyncio.create_task(_writer(websocket, session))
    try:
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(
                    "Agent connection error: %s",
                    exc,
                    extra={
                        "event": LogEvent.AGENT_ERROR,
                        "component": Component.REGISTRY,
                        "container_id": session.container_id,
                    },
                )
    finally:
        reader.cancel()
        writer.cancel()
        await registry.unregister(session)
