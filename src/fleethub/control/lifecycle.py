"""Container lifecycle: deploy, start, stop, delete and config pushes."""

import logging
from collections.abc import Callable
from typing import Any

from fleethub.app.config import get_settings
from fleethub.control.jobs import ContainerLocks, JobEngineBase, JobTable
from fleethub.control.registry import AgentSessionRegistry, SessionFactory
from fleethub.control.tasks import TaskTracker
from fleethub.core.domain import ContainerStatus, workspace_name_for
from fleethub.core.errors import ContainerBusyError, HostAgentError, InvalidStateError
from fleethub.core.events import AgentStatusEvent
from fleethub.core.interfaces import ContainerSpec, HostRuntime
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import Container, Host
from fleethub.core.retryable import describe_error
from fleethub.infra.event_bus import EventBus
from fleethub.services import container_service, host_service

logger = logging.getLogger(__name__)

_settings = get_settings()

RuntimeFactory = Callable[[Host], HostRuntime]


class ContainerLifecycle(JobEngineBase):
    """Operator-driven lifecycle operations.

    start/stop/delete hold the per-container lock and are rejected while a
    migration or rename owns the container.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        runtimes: RuntimeFactory,
        registry: AgentSessionRegistry,
        events: EventBus,
        jobs: JobTable,
        locks: ContainerLocks,
        tasks: TaskTracker,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ) -> None:
        super().__init__(max_retries, retry_base_delay)
        self._session_factory = session_factory
        self._runtimes = runtimes
        self._registry = registry
        self._events = events
        self._jobs = jobs
        self._locks = locks
        self._tasks = tasks

    def _ensure_idle(self, container_id: str) -> None:
        job = self._jobs.active(container_id)
        if job is not None:
            raise ContainerBusyError(f"{job.kind.capitalize()} in progress")

    async def _load(self, container_id: str) -> tuple[Container, Host]:
        async with self._session_factory() as db:
            container = await container_service.get_container(db, container_id)
            host = await host_service.get_host(db, container.host_id)
        return container, host

    @staticmethod
    def spec_for(container: Container, agent_token: str | None = None) -> ContainerSpec:
        return ContainerSpec(
            container_name=container.container_name,
            workspace_name=workspace_name_for(
                container.container_name, _settings.container.workspace_suffix
            ),
            slug=container.slug,
            environment=container.environment,
            frontend=container.frontend,
            apis=container.apis,
            code_server_enabled=container.code_server_enabled,
            agent_token=agent_token,
        )

    # =========================================================================
    # Deploy
    # =========================================================================

    async def create(self, **fields: Any) -> tuple[Container, str]:
        """Create the record and deploy it in the background.

        Returns:
            (container, agent_token)
        """
        async with self._session_factory() as db:
            container, token = await container_service.create_container(db, **fields)

        self._events.emit(
            AgentStatusEvent(app_id=container.id, slug=container.slug, status=container.status)
        )
        logger.info(
            "Container created",
            extra={
                "event": LogEvent.OPERATION_STARTED,
                "component": Component.LIFECYCLE,
                "container_id": container.id,
                "slug": container.slug,
            },
        )
        self._tasks.spawn(self._deploy(container.id, token), name=f"deploy-{container.id}")
        return container, token

    async def redeploy(self, container_id: str) -> Container:
        """Retry a failed deploy with a fresh agent token.

        Raises:
            InvalidStateError: If the container is not in error
        """
        async with self._locks.get(container_id):
            self._ensure_idle(container_id)
            async with self._session_factory() as db:
                container = await container_service.get_container(db, container_id)
                if container.status != ContainerStatus.ERROR:
                    raise InvalidStateError("Only containers in error can be redeployed")
                token = await container_service.rotate_token(db, container_id)

            container = await self._registry.record_status(container_id, ContainerStatus.DEPLOYING)
        self._tasks.spawn(self._deploy(container_id, token), name=f"deploy-{container_id}")
        return container

    async def _deploy(self, container_id: str, token: str) -> None:
        try:
            container, host = await self._load(container_id)
            runtime = self._runtimes(host)
            await runtime.create_container(self.spec_for(container, token))
        except Exception as e:
            logger.error(
                "Deploy failed: %s",
                e,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "component": Component.LIFECYCLE,
                    "container_id": container_id,
                },
            )
            await self._registry.record_status(
                container_id, ContainerStatus.ERROR, f"Deploy failed: {describe_error(e)}"
            )
            return

        # The agent may have connected while the host agent was still answering
        if not self._registry.is_connected(container_id):
            await self._registry.record_status(container_id, ContainerStatus.PENDING)

    # =========================================================================
    # Start / stop / delete
    # =========================================================================

    async def start(self, container_id: str) -> Container:
        """Start the container on its host.

        Status becomes pending first; the agent connecting moves it to
        connected, the reconciler to disconnected after the start grace.

        Raises:
            ContainerBusyError: A migration or rename owns the container
            HostAgentError: The host agent call failed
        """
        async with self._locks.get(container_id):
            self._ensure_idle(container_id)
            container, host = await self._load(container_id)
            if self._registry.is_connected(container_id):
                return container

            container = await self._registry.record_status(container_id, ContainerStatus.PENDING)
            runtime = self._runtimes(host)
            try:
                await self._retry(lambda: runtime.start_container(container.container_name))
            except Exception as e:
                logger.error(
                    "Start failed: %s",
                    e,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.LIFECYCLE,
                        "container_id": container_id,
                    },
                )
                raise HostAgentError(
                    f"Host agent failed to start container: {describe_error(e)}"
                ) from e
        return container

    async def stop(self, container_id: str) -> Container:
        """Stop the container (best effort, idempotent)."""
        async with self._locks.get(container_id):
            self._ensure_idle(container_id)
            container, host = await self._load(container_id)

            self._registry.evict(container_id)
            runtime = self._runtimes(host)
            try:
                await self._retry(lambda: runtime.stop_container(container.container_name))
            except Exception as e:
                logger.warning(
                    "Host stop failed, continuing: %s",
                    e,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.LIFECYCLE,
                        "container_id": container_id,
                    },
                )
            return await self._registry.record_status(container_id, ContainerStatus.DISCONNECTED)

    async def delete(self, container_id: str) -> None:
        async with self._locks.get(container_id):
            self._ensure_idle(container_id)
            container, host = await self._load(container_id)
            self._registry.evict(container_id)

            runtime = self._runtimes(host)
            try:
                await self._retry(lambda: runtime.delete_container(container.container_name))
            except Exception as e:
                logger.warning(
                    "Host delete failed, removing record anyway: %s",
                    e,
                    extra={
                        "event": LogEvent.CLEANUP_FAILED,
                        "component": Component.LIFECYCLE,
                        "container_id": container_id,
                    },
                )

            async with self._session_factory() as db:
                await container_service.delete_container(db, container_id)

        self._locks.discard(container_id)
        logger.info(
            "Container deleted",
            extra={
                "event": LogEvent.OPERATION_SUCCESS,
                "component": Component.LIFECYCLE,
                "container_id": container_id,
            },
        )

    # =========================================================================
    # Configuration
    # =========================================================================

    async def set_enabled(self, container_id: str, enabled: bool) -> Container:
        async with self._session_factory() as db:
            container = await container_service.set_enabled(db, container_id, enabled)
        self._registry.push_config(container)
        return container

    async def update(self, container_id: str, changes: dict[str, Any]) -> Container:
        """Persist operator changes and push them to the connected agent."""
        async with self._session_factory() as db:
            container = await container_service.update_container(db, container_id, changes)

        if changes and set(changes) == {"idle_timeouts"}:
            self._registry.push_power_policy(container)
        elif changes:
            self._registry.push_config(container)
        return container
