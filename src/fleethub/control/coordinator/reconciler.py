"""SessionReconciler - keeps container status consistent with agent sessions.

Each tick:
1. Drops sessions that stopped talking (stale heartbeat).
2. Corrects drift between persisted status and the session table for
   containers without an active job.
3. Gives up on containers pending for longer than the start grace.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from fleethub.app.config import get_settings
from fleethub.control.coordinator.base import CoordinatorBase
from fleethub.control.jobs import JobTable
from fleethub.control.registry import AgentSessionRegistry, SessionFactory
from fleethub.core.domain import ContainerStatus
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import utc_now
from fleethub.services import container_service

logger = logging.getLogger(__name__)

_settings = get_settings()


class SessionReconciler(CoordinatorBase):
    INTERVAL = _settings.coordinator.reconcile_interval

    def __init__(
        self,
        session_factory: SessionFactory,
        registry: AgentSessionRegistry,
        jobs: JobTable,
        stale_threshold: float = _settings.agent.stale_threshold,
        start_grace: float = _settings.agent.start_grace,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._registry = registry
        self._jobs = jobs
        self._stale_threshold = stale_threshold
        self._start_grace = start_grace
        self._now = now

    async def tick(self) -> None:
        dropped = await self._drop_stale()
        fixed = await self._fix_drift()
        if dropped or fixed:
            logger.info(
                "Reconciled %d stale sessions, %d drifted containers",
                dropped,
                fixed,
                extra={"event": LogEvent.RECONCILE_COMPLETE, "component": Component.RECONCILER},
            )

    async def _drop_stale(self) -> int:
        stale = self._registry.stale_sessions(self._stale_threshold)
        for session in stale:
            logger.warning(
                "Agent heartbeat timed out",
                extra={
                    "event": LogEvent.AGENT_STALE,
                    "component": Component.RECONCILER,
                    "container_id": session.container_id,
                    "session_id": session.session_id,
                },
            )
            session.close()
            await self._registry.unregister(session, "Agent heartbeat timed out")
        return len(stale)

    async def _fix_drift(self) -> int:
        async with self._session_factory() as db:
            containers = await container_service.list_containers(db)

        now = self._now()
        fixed = 0
        for container in containers:
            # Jobs drive status themselves
            if self._jobs.active(container.id) is not None:
                continue

            connected = self._registry.is_connected(container.id)
            if container.status == ContainerStatus.CONNECTED and not connected:
                await self._registry.record_status(container.id, ContainerStatus.DISCONNECTED)
            elif connected and container.status != ContainerStatus.CONNECTED:
                await self._registry.record_status(container.id, ContainerStatus.CONNECTED)
            elif (
                container.status == ContainerStatus.PENDING
                and not connected
                and (now - container.status_changed_at).total_seconds() > self._start_grace
            ):
                await self._registry.record_status(
                    container.id,
                    ContainerStatus.DISCONNECTED,
                    f"Agent did not connect within {self._start_grace:g}s of start",
                )
            else:
                continue
            fixed += 1
        return fixed
