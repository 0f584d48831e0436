"""Host runtime interface (the per-host agent as seen by the orchestrator)."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

from fleethub.core.domain import ArtifactKind


@dataclass
class ExportInfo:
    """Sizes of the artifacts produced by an export."""

    rootfs_bytes: int
    workspace_bytes: int

    @property
    def total_bytes(self) -> int:
        return self.rootfs_bytes + self.workspace_bytes


@dataclass
class ContainerSpec:
    """What the host agent needs to create a container (image handling is its own)."""

    container_name: str
    workspace_name: str
    slug: str
    environment: str
    frontend: dict
    apis: list[dict]
    code_server_enabled: bool
    agent_token: str | None = None


class HostRuntime(ABC):
    """Operations a host agent performs on containers it owns.

    Implementations: HostAgentClient (HTTP). Tests use in-memory fakes.
    """

    @abstractmethod
    async def probe(self) -> float:
        """Check reachability; returns round-trip latency in milliseconds."""
        ...

    @abstractmethod
    async def create_container(self, spec: ContainerSpec) -> None:
        ...

    @abstractmethod
    async def start_container(self, container_name: str) -> None:
        ...

    @abstractmethod
    async def stop_container(self, container_name: str) -> None:
        """Stop a container. Stopping a missing/stopped container is a no-op."""
        ...

    @abstractmethod
    async def delete_container(self, container_name: str) -> None:
        """Delete container and workspace. Deleting a missing container is a no-op."""
        ...

    @abstractmethod
    async def rename_container(
        self, container_name: str, new_container_name: str, new_slug: str
    ) -> None:
        """Re-identify a stopped container (runtime name, workspace, agent identity)."""
        ...

    @abstractmethod
    async def export_container(
        self, transfer_id: str, container_name: str, workspace_name: str
    ) -> ExportInfo:
        """Serialize a stopped container and its workspace into artifacts."""
        ...

    @abstractmethod
    def stream_artifact(self, transfer_id: str, kind: ArtifactKind) -> AsyncIterator[bytes]:
        """Read an exported artifact as a stream of chunks."""
        ...

    @abstractmethod
    async def upload_artifact(
        self, transfer_id: str, kind: ArtifactKind, chunks: AsyncIterator[bytes]
    ) -> None:
        """Receive an artifact stream for a later import."""
        ...

    @abstractmethod
    async def import_artifact(
        self, transfer_id: str, kind: ArtifactKind, container_name: str, workspace_name: str
    ) -> None:
        """Materialize an uploaded artifact."""
        ...

    @abstractmethod
    async def discard_transfer(self, transfer_id: str) -> None:
        """Remove every artifact of a transfer. Unknown transfers are a no-op."""
        ...

    @abstractmethod
    def terminal_url(self, container_name: str) -> str:
        """WebSocket URL of the interactive shell of a container."""
        ...

    @abstractmethod
    def terminal_headers(self) -> dict[str, str]:
        ...
