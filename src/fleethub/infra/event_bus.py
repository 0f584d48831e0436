"""Status fan-out channel (producer side).

Producers call ``emit()``, which never blocks: events are queued in a
bounded FIFO and a single drain task publishes them to Redis PUB/SUB in
queue order. One queue and one publisher keep the relative order of all
events, so events of one container are never reordered. When the queue
is full the oldest event is dropped and counted.
"""

import asyncio
import logging

from fleethub.app.metrics.collector import (
    EVENT_QUEUE_DEPTH,
    EVENTS_DROPPED_TOTAL,
    EVENTS_PUBLISHED_TOTAL,
)
from fleethub.core.events import FleetEvent
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.infra.redis_pubsub import ChannelPublisher

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, publisher: ChannelPublisher, channel: str, maxsize: int = 1024) -> None:
        self._publisher = publisher
        self._channel = channel
        self._queue: asyncio.Queue[FleetEvent] = asyncio.Queue(maxsize=maxsize)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def emit(self, event: FleetEvent) -> None:
        """Queue an event for publication without waiting."""
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            EVENTS_DROPPED_TOTAL.inc()
            logger.warning(
                "Event queue full, dropping oldest event",
                extra={
                    "event": LogEvent.EVENT_DROPPED,
                    "component": Component.EVENTS,
                    "dropped_type": dropped.EVENT_TYPE,
                },
            )
        self._queue.put_nowait(event)
        EVENT_QUEUE_DEPTH.set(self._queue.qsize())

    async def _publish(self, event: FleetEvent) -> None:
        try:
            await self._publisher.publish(self._channel, event.to_json())
            EVENTS_PUBLISHED_TOTAL.labels(event_type=event.EVENT_TYPE).inc()
        except Exception as e:
            # Observers resync from the REST API; the orchestrator keeps going
            EVENTS_DROPPED_TOTAL.inc()
            logger.warning(
                "Failed to publish event",
                extra={
                    "event": LogEvent.REDIS_CONNECTION_ERROR,
                    "component": Component.EVENTS,
                    "event_type": event.EVENT_TYPE,
                    "error": str(e),
                },
            )

    async def run(self) -> None:
        """Drain loop. Runs until cancelled."""
        while True:
            event = await self._queue.get()
            try:
                await self._publish(event)
            finally:
                self._queue.task_done()
                EVENT_QUEUE_DEPTH.set(self._queue.qsize())

    async def flush(self) -> None:
        """Publish everything queued so far (used on shutdown and in tests)."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._publish(event)
            finally:
                self._queue.task_done()
        EVENT_QUEUE_DEPTH.set(0)
