"""Observer endpoints of the status fan-out channel.

Events are published once to Redis PUB/SUB by the EventBus; every
observer connection below owns its own ChannelSubscriber, so a slow
observer only delays itself.

    GET /events   Server-Sent Events (optional app_id filter)
    WS  /ws       WebSocket, same envelopes as text frames

Configuration via SSEConfig (SSE_ env prefix).
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from fleethub.app.config import get_settings
from fleethub.app.metrics.collector import (
    OBSERVER_ERRORS_TOTAL,
    OBSERVER_MESSAGES_TOTAL,
    OBSERVERS_ACTIVE,
)
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.infra import get_redis
from fleethub.infra.redis_pubsub import ChannelSubscriber

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

_settings = get_settings()
_sse_config = _settings.sse
_channel_config = _settings.redis_channel


def _filter_payload(
    payload: str, app_id: str | None, transport: str = "sse"
) -> tuple[str, str] | None:
    """Return (event_type, payload) if the observer wants this envelope."""
    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError as e:
        OBSERVER_ERRORS_TOTAL.labels(transport=transport, error_type="json_decode").inc()
        logger.warning(
            "Invalid JSON on event channel",
            extra={"event": LogEvent.EVENT_DROPPED, "component": Component.EVENTS, "error": str(e)},
        )
        return None

    event_type = envelope.get("type", "message")
    if app_id is not None and envelope.get("data", {}).get("appId") != app_id:
        return None
    return event_type, payload


async def _event_generator(request: Request, app_id: str | None) -> AsyncGenerator[str, None]:
    """Generate SSE events.

    Yields:
    - connected: once, right after subscribing
    - <event type>: one envelope per published event
    - heartbeat: every SSE_HEARTBEAT_INTERVAL seconds
    """
    subscriber = ChannelSubscriber(get_redis())

    logger.info(
        "Observer connected",
        extra={
            "event": LogEvent.OBSERVER_CONNECTED,
            "component": Component.EVENTS,
            "transport": "sse",
            "app_id": app_id,
        },
    )

    OBSERVERS_ACTIVE.labels(transport="sse").inc()
    try:
        await subscriber.subscribe(_channel_config.events)

        loop = asyncio.get_running_loop()
        last_heartbeat = loop.time()

        yield "event: connected\ndata: {}\n\n"
        OBSERVER_MESSAGES_TOTAL.labels(transport="sse", event_type="connected").inc()

        while True:
            if await request.is_disconnected():
                break

            try:
                payload = await subscriber.get_message(timeout=_sse_config.poll_timeout)
            except Exception as e:
                OBSERVER_ERRORS_TOTAL.labels(transport="sse", error_type="redis_read").inc()
                logger.warning(
                    "Redis read error",
                    extra={
                        "event": LogEvent.REDIS_CONNECTION_ERROR,
                        "component": Component.EVENTS,
                        "error": str(e),
                    },
                )
                await asyncio.sleep(1)
                continue

            if payload is not None:
                selected = _filter_payload(payload, app_id)
                if selected is not None:
                    event_type, data = selected
                    yield f"event: {event_type}\ndata: {data}\n\n"
                    OBSERVER_MESSAGES_TOTAL.labels(transport="sse", event_type=event_type).inc()

            now = loop.time()
            if now - last_heartbeat >= _sse_config.heartbeat_interval:
                yield "event: heartbeat\ndata: {}\n\n"
                OBSERVER_MESSAGES_TOTAL.labels(transport="sse", event_type="heartbeat").inc()
                last_heartbeat = now

    except asyncio.CancelledError:
        pass
    finally:
        OBSERVERS_ACTIVE.labels(transport="sse").dec()
        await subscriber.unsubscribe()
        logger.info(
            "Observer disconnected",
            extra={
                "event": LogEvent.OBSERVER_DISCONNECTED,
                "component": Component.EVENTS,
                "transport": "sse",
            },
        )


@router.get("/events")
async def sse_events(
    request: Request,
    app_id: str | None = Query(default=None),
) -> StreamingResponse:
    """SSE endpoint for real-time fleet updates.

    Streams the fan-out envelopes ({"type", "data"}) with the envelope
    type as SSE event name. app_id restricts the stream to one container.
    """
    return StreamingResponse(
        _event_generator(request, app_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


async def _drain_client(websocket: WebSocket) -> None:
    """Consume client frames until it disconnects (observers only listen)."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _forward(websocket: WebSocket, subscriber: ChannelSubscriber, app_id: str | None) -> None:
    while True:
        try:
            payload = await subscriber.get_message(timeout=_sse_config.poll_timeout)
        except Exception as e:
            OBSERVER_ERRORS_TOTAL.labels(transport="ws", error_type="redis_read").inc()
            logger.warning(
                "Redis read error",
                extra={
                    "event": LogEvent.REDIS_CONNECTION_ERROR,
                    "component": Component.EVENTS,
                    "error": str(e),
                },
            )
            await asyncio.sleep(1)
            continue

        if payload is None:
            continue
        selected = _filter_payload(payload, app_id, transport="ws")
        if selected is not None:
            event_type, data = selected
            await websocket.send_text(data)
            OBSERVER_MESSAGES_TOTAL.labels(transport="ws", event_type=event_type).inc()


@router.websocket("/ws")
async def ws_events(websocket: WebSocket, app_id: str | None = None) -> None:
    """WebSocket observer: one text frame per envelope."""
    await websocket.accept()
    subscriber = ChannelSubscriber(get_redis())
    OBSERVERS_ACTIVE.labels(transport="ws").inc()
    logger.info(
        "Observer connected",
        extra={
            "event": LogEvent.OBSERVER_CONNECTED,
            "component": Component.EVENTS,
            "transport": "ws",
            "app_id": app_id,
        },
    )
    try:
        await subscriber.subscribe(_channel_config.events)
        async with asyncio.TaskGroup() as tg:
            drain = tg.create_task(_drain_client(websocket))
            forward = tg.create_task(_forward(websocket, subscriber, app_id))
            drain.add_done_callback(lambda _: forward.cancel())
    except* WebSocketDisconnect:
        pass
    finally:
        OBSERVERS_ACTIVE.labels(transport="ws").dec()
        await subscriber.unsubscribe()
        logger.info(
            "Observer disconnected",
            extra={
                "event": LogEvent.OBSERVER_DISCONNECTED,
                "component": Component.EVENTS,
                "transport": "ws",
            },
        )
