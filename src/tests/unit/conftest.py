"""Shared fixtures for control plane and API unit tests.

The container/host services are replaced by an in-memory store and every
host by an in-memory runtime, so jobs run end to end without PostgreSQL
or host agents.
"""

import asyncio
import itertools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest

from fleethub.control.jobs import ContainerLocks, JobTable
from fleethub.control.registry import AgentSessionRegistry
from fleethub.control.tasks import TaskTracker
from fleethub.core.domain import ArtifactKind, ContainerStatus, HostStatus, JobKind
from fleethub.core.errors import (
    ContainerNotFoundError,
    HostInUseError,
    HostNotFoundError,
    SlugConflictError,
)
from fleethub.core.interfaces import ContainerSpec, ExportInfo, HostRuntime
from fleethub.core.models import Container, Host
from fleethub.core.protocol import AuthMessage
from fleethub.core.security import hash_token
from fleethub.services import container_service, host_service

AGENT_TOKEN = "agent-token"
_TOKEN_HASH = hash_token(AGENT_TOKEN)


class RecordingEvents:
    """EventBus stand-in that keeps emitted events in order."""

    def __init__(self) -> None:
        self.emitted: list[Any] = []

    def emit(self, event: Any) -> None:
        self.emitted.append(event)

    def of_type(self, cls: type) -> list[Any]:
        return [e for e in self.emitted if isinstance(e, cls)]


class FakeStore:
    """In-memory replacement for container_service/host_service."""

    def __init__(self) -> None:
        self.containers: dict[str, Container] = {}
        self.hosts: dict[str, Host] = {}

    # Builders

    def add_host(self, name: str, status: HostStatus = HostStatus.ONLINE) -> Host:
        host = Host(name=name, address=f"http://{name}:9000", status=status)
        self.hosts[host.id] = host
        return host

    def add_container(
        self,
        slug: str,
        host: Host,
        status: ContainerStatus = ContainerStatus.DISCONNECTED,
        **fields: Any,
    ) -> Container:
        container = Container(
            name=fields.pop("name", slug.title()),
            slug=slug,
            host_id=host.id,
            container_name=f"hr-{slug}",
            frontend={"target_port": 3000},
            apis=[],
            idle_timeouts=fields.pop("idle_timeouts", {}),
            status=status,
            token_hash=_TOKEN_HASH,
            **fields,
        )
        self.containers[container.id] = container
        return container

    # container_service

    async def create_container(self, db: Any, **fields: Any) -> tuple[Container, str]:
        host = self.hosts.get(fields["host_id"])
        if host is None:
            raise HostNotFoundError()
        if any(c.slug == fields["slug"] for c in self.containers.values()):
            raise SlugConflictError()
        container = self.add_container(
            fields["slug"], host, status=ContainerStatus.DEPLOYING, name=fields["name"]
        )
        return container, AGENT_TOKEN

    async def get_container(self, db: Any, container_id: str) -> Container:
        container = self.containers.get(container_id)
        if container is None:
            raise ContainerNotFoundError()
        return container

    async def get_container_by_slug(self, db: Any, slug: str) -> Container | None:
        return next((c for c in self.containers.values() if c.slug == slug), None)

    async def list_containers(self, db: Any, host_id: str | None = None) -> list[Container]:
        return [c for c in self.containers.values() if host_id is None or c.host_id == host_id]

    async def list_with_active_job(self, db: Any) -> list[Container]:
        return [c for c in self.containers.values() if c.active_job is not None]

    async def update_container(self, db: Any, container_id: str, changes: dict) -> Container:
        container = await self.get_container(db, container_id)
        for key, value in changes.items():
            setattr(container, key, value)
        container.updated_at = datetime.now(UTC)
        return container

    async def set_enabled(self, db: Any, container_id: str, enabled: bool) -> Container:
        return await self.update_container(db, container_id, {"enabled": enabled})

    async def delete_container(self, db: Any, container_id: str) -> None:
        await self.get_container(db, container_id)
        del self.containers[container_id]

    async def set_status(
        self, db: Any, container_id: str, status: ContainerStatus, message: str | None = None
    ) -> Container:
        container = await self.get_container(db, container_id)
        if container.status != status:
            container.status_changed_at = datetime.now(UTC)
        container.status = status
        container.status_message = message
        return container

    async def mark_connected(
        self, db: Any, container_id: str, version: str, ip_address: str | None
    ) -> tuple[Container, bool]:
        container = await self.get_container(db, container_id)
        first_connect = container.status == ContainerStatus.DEPLOYING
        container.status = ContainerStatus.CONNECTED
        container.status_message = None
        container.agent_version = version
        return container, first_connect

    async def set_host(self, db: Any, container_id: str, host_id: str) -> Container:
        container = await self.get_container(db, container_id)
        container.host_id = host_id
        return container

    async def set_identity(
        self, db: Any, container_id: str, *, slug: str, name: str, container_name: str
    ) -> Container:
        container = await self.get_container(db, container_id)
        other = await self.get_container_by_slug(db, slug)
        if other is not None and other.id != container_id:
            raise SlugConflictError()
        container.slug = slug
        container.name = name
        container.container_name = container_name
        return container

    async def set_active_job(
        self, db: Any, container_id: str, kind: JobKind | None, job_id: str | None = None
    ) -> None:
        container = await self.get_container(db, container_id)
        container.active_job = kind.value if kind is not None else None
        container.active_job_id = job_id if kind is not None else None

    async def rotate_token(self, db: Any, container_id: str) -> str:
        await self.get_container(db, container_id)
        return "rotated-token"

    # host_service

    async def get_host(self, db: Any, host_id: str) -> Host:
        host = self.hosts.get(host_id)
        if host is None:
            raise HostNotFoundError()
        return host

    async def list_hosts(self, db: Any) -> list[Host]:
        return sorted(self.hosts.values(), key=lambda h: h.name)

    async def delete_host(self, db: Any, host_id: str) -> None:
        await self.get_host(db, host_id)
        if any(c.host_id == host_id for c in self.containers.values()):
            raise HostInUseError()
        del self.hosts[host_id]

    async def set_reachability(
        self, db: Any, host_id: str, status: HostStatus, latency_ms: float | None
    ) -> bool:
        host = self.hosts.get(host_id)
        if host is None:
            return False
        changed = host.status != status or host.latency_ms != latency_ms
        host.status = status
        host.latency_ms = latency_ms
        return changed


_CONTAINER_FUNCS = (
    "create_container",
    "get_container",
    "get_container_by_slug",
    "list_containers",
    "list_with_active_job",
    "update_container",
    "set_enabled",
    "delete_container",
    "set_status",
    "mark_connected",
    "set_host",
    "set_identity",
    "set_active_job",
    "rotate_token",
)
_HOST_FUNCS = ("get_host", "list_hosts", "delete_host", "set_reachability")


class FakeRuntime(HostRuntime):
    """In-memory host agent.

    containers maps runtime name -> "running" | "stopped". fail maps a
    method name to the exception it raises. on_start is awaited after a
    successful start (used to simulate the agent reconnecting).
    """

    def __init__(self, name: str, chunk_size: int = 4) -> None:
        self.name = name
        self.chunk_size = chunk_size
        self.containers: dict[str, str] = {}
        self.exports: dict[tuple[str, ArtifactKind], bytes] = {}
        self.uploads: dict[tuple[str, ArtifactKind], bytes] = {}
        self.calls: list[tuple[str, ...]] = []
        self.fail: dict[str, Exception] = {}
        self.on_start: Any = None
        self.stream_gate: asyncio.Event | None = None
        self.artifact_payloads = {
            ArtifactKind.ROOTFS: b"r" * 20,
            ArtifactKind.WORKSPACE: b"w" * 8,
        }
        self.latency_ms = 1.5

    def _call(self, method: str, *args: str) -> None:
        self.calls.append((method, *args))
        if method in self.fail:
            raise self.fail[method]

    def called(self, method: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == method]

    async def probe(self) -> float:
        self._call("probe")
        return self.latency_ms

    async def create_container(self, spec: ContainerSpec) -> None:
        self._call("create_container", spec.container_name)
        self.containers[spec.container_name] = "stopped"

    async def start_container(self, container_name: str) -> None:
        self._call("start_container", container_name)
        self.containers[container_name] = "running"
        if self.on_start is not None:
            await self.on_start(container_name)

    async def stop_container(self, container_name: str) -> None:
        self._call("stop_container", container_name)
        if container_name in self.containers:
            self.containers[container_name] = "stopped"

    async def delete_container(self, container_name: str) -> None:
        self._call("delete_container", container_name)
        self.containers.pop(container_name, None)

    async def rename_container(
        self, container_name: str, new_container_name: str, new_slug: str
    ) -> None:
        self._call("rename_container", container_name, new_container_name)
        self.containers[new_container_name] = self.containers.pop(container_name, "stopped")

    async def export_container(
        self, transfer_id: str, container_name: str, workspace_name: str
    ) -> ExportInfo:
        self._call("export_container", transfer_id)
        for kind, payload in self.artifact_payloads.items():
            self.exports[(transfer_id, kind)] = payload
        return ExportInfo(
            rootfs_bytes=len(self.artifact_payloads[ArtifactKind.ROOTFS]),
            workspace_bytes=len(self.artifact_payloads[ArtifactKind.WORKSPACE]),
        )

    async def stream_artifact(self, transfer_id: str, kind: ArtifactKind) -> AsyncIterator[bytes]:
        self._call("stream_artifact", transfer_id, kind)
        payload = self.exports[(transfer_id, kind)]
        for offset in range(0, len(payload), self.chunk_size):
            yield payload[offset : offset + self.chunk_size]
            if self.stream_gate is not None:
                await self.stream_gate.wait()

    async def upload_artifact(
        self, transfer_id: str, kind: ArtifactKind, chunks: AsyncIterator[bytes]
    ) -> None:
        self._call("upload_artifact", transfer_id, kind)
        received = b""
        async for chunk in chunks:
            received += chunk
        self.uploads[(transfer_id, kind)] = received

    async def import_artifact(
        self, transfer_id: str, kind: ArtifactKind, container_name: str, workspace_name: str
    ) -> None:
        self._call("import_artifact", transfer_id, kind)
        if kind == ArtifactKind.ROOTFS:
            self.containers[container_name] = "stopped"

    async def discard_transfer(self, transfer_id: str) -> None:
        self._call("discard_transfer", transfer_id)
        for key in [k for k in self.exports if k[0] == transfer_id]:
            del self.exports[key]
        for key in [k for k in self.uploads if k[0] == transfer_id]:
            del self.uploads[key]

    def terminal_url(self, container_name: str) -> str:
        return f"ws://{self.name}:9000/api/v1/containers/{container_name}/terminal"

    def terminal_headers(self) -> dict[str, str]:
        return {}


class TickClock:
    """Monotonic clock that advances by one second per reading."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def __call__(self) -> float:
        return float(next(self._counter))


class ManualClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> FakeStore:
    fake = FakeStore()
    for name in _CONTAINER_FUNCS:
        monkeypatch.setattr(container_service, name, getattr(fake, name))
    for name in _HOST_FUNCS:
        monkeypatch.setattr(host_service, name, getattr(fake, name))
    return fake


@pytest.fixture
def session_factory():
    @asynccontextmanager
    async def factory():
        yield MagicMock()

    return factory


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def registry(session_factory, events: RecordingEvents) -> AgentSessionRegistry:
    return AgentSessionRegistry(session_factory, events, outbox_maxsize=16, clock=TickClock())


@pytest.fixture
def jobs() -> JobTable:
    return JobTable(retention_seconds=300, retention_maxsize=100)


@pytest.fixture
def locks() -> ContainerLocks:
    return ContainerLocks()


@pytest.fixture
async def tasks() -> AsyncIterator[TaskTracker]:
    tracker = TaskTracker()
    yield tracker
    await tracker.shutdown()


@pytest.fixture
def runtimes() -> dict[str, FakeRuntime]:
    """host_id -> FakeRuntime, filled by the tests."""
    return {}


@pytest.fixture
def runtime_factory(runtimes: dict[str, FakeRuntime]):
    def factory(host: Host) -> HostRuntime:
        if host.id not in runtimes:
            runtimes[host.id] = FakeRuntime(host.name)
        return runtimes[host.id]

    return factory


@pytest.fixture
def connect_agent(registry: AgentSessionRegistry, store: FakeStore):
    """Register an agent session for a container, as the WebSocket endpoint does."""

    async def connect(container_id: str, version: str = "1.0.0"):
        container = store.containers[container_id]
        auth = AuthMessage(token=AGENT_TOKEN, service_name=container.slug, version=version)
        return await registry.register(container, auth)

    return connect


@pytest.fixture
def drain_outbox():
    """Take every queued outbound message of a session."""

    def drain(session) -> list[Any]:
        messages = []
        while not session.outbox.empty():
            messages.append(session.outbox.get_nowait())
        return messages

    return drain
