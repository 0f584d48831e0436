"""Unit tests for EventBus (bounded FIFO fan-out)."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from fleethub.core.domain import ContainerStatus, HostStatus
from fleethub.core.events import AgentStatusEvent, HostStatusEvent
from fleethub.infra.event_bus import EventBus


def _status(app_id: str, status: ContainerStatus = ContainerStatus.CONNECTED) -> AgentStatusEvent:
    return AgentStatusEvent(app_id=app_id, slug=app_id, status=status)


def _published(publisher: AsyncMock) -> list[dict]:
    return [json.loads(call.args[1]) for call in publisher.publish.await_args_list]


@pytest.fixture
def publisher() -> AsyncMock:
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=1)
    return mock


class TestEventBus:
    async def test_flush_publishes_in_emit_order(self, publisher: AsyncMock) -> None:
        bus = EventBus(publisher, "fleethub:events")
        bus.emit(_status("c1", ContainerStatus.PENDING))
        bus.emit(HostStatusEvent(host_id="h1", status=HostStatus.ONLINE, latency_ms=1.0))
        bus.emit(_status("c1", ContainerStatus.CONNECTED))

        await bus.flush()

        envelopes = _published(publisher)
        assert [e["type"] for e in envelopes] == ["agent:status", "hosts:status", "agent:status"]
        assert envelopes[0]["data"]["status"] == "pending"
        assert envelopes[2]["data"]["status"] == "connected"
        assert all(call.args[0] == "fleethub:events" for call in publisher.publish.await_args_list)
        assert bus.pending == 0

    async def test_full_queue_drops_oldest(self, publisher: AsyncMock) -> None:
        bus = EventBus(publisher, "fleethub:events", maxsize=2)
        for app_id in ("c1", "c2", "c3"):
            bus.emit(_status(app_id))

        assert bus.pending == 2
        await bus.flush()

        assert [e["data"]["appId"] for e in _published(publisher)] == ["c2", "c3"]

    async def test_publish_failure_is_not_raised(self, publisher: AsyncMock) -> None:
        publisher.publish.side_effect = [ConnectionError("redis down"), 1]
        bus = EventBus(publisher, "fleethub:events")
        bus.emit(_status("c1"))
        bus.emit(_status("c2"))

        await bus.flush()

        assert publisher.publish.await_count == 2

    async def test_run_drains_queue(self, publisher: AsyncMock) -> None:
        bus = EventBus(publisher, "fleethub:events")
        task = asyncio.create_task(bus.run())
        try:
            bus.emit(_status("c1"))
            async with asyncio.timeout(1):
                while publisher.publish.await_count < 1:
                    await asyncio.sleep(0)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert _published(publisher)[0]["data"]["appId"] == "c1"
