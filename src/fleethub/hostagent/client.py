"""Host agent HTTP client.

Talks to the agent running on each host to manage containers and to
stream migration artifacts between hosts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from fleethub.app.config import get_settings
from fleethub.core.domain import ArtifactKind
from fleethub.core.interfaces import ContainerSpec, ExportInfo, HostRuntime
from fleethub.core.models import Host

logger = logging.getLogger(__name__)


@dataclass
class HostAgentConfig:
    """Host agent connection configuration."""

    endpoint: str
    api_key: str = ""
    timeout: float = 30.0
    transfer_timeout: float = 600.0
    chunk_size: int = 256 * 1024


class HostAgentClient(HostRuntime):
    """HTTP client for the host agent API."""

    def __init__(self, config: HostAgentConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    def _get_headers(self) -> dict[str, str]:
        headers = {}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.endpoint,
                headers=self._get_headers(),
                timeout=self._config.timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: Literal["get", "post", "put", "delete"],
        path: str,
        *,
        on_404: Literal["raise", "none"] = "raise",
        **kwargs: Any,
    ) -> httpx.Response | None:
        """Make HTTP request with common error handling.

        Args:
            method: HTTP method.
            path: URL path.
            on_404: "raise" (default) raises HTTPStatusError, "none" returns None.
            **kwargs: Additional arguments for httpx request.
        """
        client = await self._get_client()
        resp = await getattr(client, method)(path, **kwargs)

        if resp.status_code == 404 and on_404 == "none":
            return None

        resp.raise_for_status()
        return resp

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    # =========================================================================
    # Containers
    # =========================================================================

    async def probe(self) -> float:
        start = time.monotonic()
        await self._request("get", "/health")
        return (time.monotonic() - start) * 1000

    async def create_container(self, spec: ContainerSpec) -> None:
        await self._request(
            "post",
            "/api/v1/containers",
            json={
                "container_name": spec.container_name,
                "workspace_name": spec.workspace_name,
                "slug": spec.slug,
                "environment": spec.environment,
                "frontend": spec.frontend,
                "apis": spec.apis,
                "code_server_enabled": spec.code_server_enabled,
                "agent_token": spec.agent_token,
            },
            timeout=self._config.transfer_timeout,
        )
        logger.info("Created container via host agent: %s", spec.container_name)

    async def start_container(self, container_name: str) -> None:
        await self._request("post", f"/api/v1/containers/{container_name}/start")
        logger.info("Started container via host agent: %s", container_name)

    async def stop_container(self, container_name: str) -> None:
        await self._request("post", f"/api/v1/containers/{container_name}/stop", on_404="none")
        logger.info("Stopped container via host agent: %s", container_name)

    async def delete_container(self, container_name: str) -> None:
        await self._request("delete", f"/api/v1/containers/{container_name}", on_404="none")
        logger.info("Deleted container via host agent: %s", container_name)

    async def rename_container(
        self, container_name: str, new_container_name: str, new_slug: str
    ) -> None:
        await self._request(
            "post",
            f"/api/v1/containers/{container_name}/rename",
            json={"new_container_name": new_container_name, "new_slug": new_slug},
            timeout=self._config.transfer_timeout,
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    async def export_container(
        self, transfer_id: str, container_name: str, workspace_name: str
    ) -> ExportInfo:
        resp = await self._request(
            "post",
            f"/api/v1/transfers/{transfer_id}/export",
            json={"container_name": container_name, "workspace_name": workspace_name},
            timeout=self._config.transfer_timeout,
        )
        data = resp.json()
        return ExportInfo(
            rootfs_bytes=int(data.get("rootfs_bytes", 0)),
            workspace_bytes=int(data.get("workspace_bytes", 0)),
        )

    async def stream_artifact(self, transfer_id: str, kind: ArtifactKind) -> AsyncIterator[bytes]:
        client = await self._get_client()
        async with client.stream(
            "GET",
            f"/api/v1/transfers/{transfer_id}/artifacts/{kind}",
            timeout=self._config.transfer_timeout,
        ) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes(self._config.chunk_size):
                yield chunk

    async def upload_artifact(
        self, transfer_id: str, kind: ArtifactKind, chunks: AsyncIterator[bytes]
    ) -> None:
        await self._request(
            "put",
            f"/api/v1/transfers/{transfer_id}/artifacts/{kind}",
            content=chunks,
            headers={"Content-Type": "application/octet-stream"},
            timeout=self._config.transfer_timeout,
        )

    async def import_artifact(
        self, transfer_id: str, kind: ArtifactKind, container_name: str, workspace_name: str
    ) -> None:
        await self._request(
            "post",
            f"/api/v1/transfers/{transfer_id}/import",
            json={
                "kind": kind.value,
                "container_name": container_name,
                "workspace_name": workspace_name,
            },
            timeout=self._config.transfer_timeout,
        )

    async def discard_transfer(self, transfer_id: str) -> None:
        await self._request("delete", f"/api/v1/transfers/{transfer_id}", on_404="none")

    # =========================================================================
    # Terminal
    # =========================================================================

    def terminal_url(self, container_name: str) -> str:
        base = self._config.endpoint.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base.removeprefix("https://")
        elif base.startswith("http://"):
            base = "ws://" + base.removeprefix("http://")
        return f"{base}/api/v1/containers/{container_name}/terminal"

    def terminal_headers(self) -> dict[str, str]:
        return self._get_headers()


class HostAgentPool:
    """One HostAgentClient per host, recreated when the address changes."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._clients: dict[str, HostAgentClient] = {}
        self._stale: list[HostAgentClient] = []
        self._transport = transport

    def get(self, host: Host) -> HostAgentClient:
        client = self._clients.get(host.id)
        if client is not None and client.endpoint == host.address:
            return client
        if client is not None:
            self._stale.append(client)

        settings = get_settings().host_agent
        client = HostAgentClient(
            HostAgentConfig(
                endpoint=host.address,
                api_key=settings.api_key,
                timeout=settings.timeout,
                transfer_timeout=settings.transfer_timeout,
                chunk_size=settings.chunk_size,
            ),
            transport=self._transport,
        )
        self._clients[host.id] = client
        return client

    async def forget(self, host_id: str) -> None:
        client = self._clients.pop(host_id, None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        for client in [*self._clients.values(), *self._stale]:
            await client.close()
        self._clients.clear()
        self._stale.clear()

    def __call__(self, host: Host) -> HostRuntime:
        return self.get(host)
