"""Wiring of the control plane components.

One Orchestrator per process. main.py builds it in the lifespan; API
routes reach it through the get_orchestrator dependency.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from fleethub.app.config import get_settings
from fleethub.control.coordinator import HostProber, SessionReconciler
from fleethub.control.jobs import ContainerLocks, JobTable
from fleethub.control.lifecycle import ContainerLifecycle
from fleethub.control.migration import MigrationEngine
from fleethub.control.registry import AgentSessionRegistry, SessionFactory
from fleethub.control.rename import RenameEngine
from fleethub.control.services import ServiceController
from fleethub.control.tasks import TaskTracker
from fleethub.core.interfaces import HostRuntime
from fleethub.core.models import Host
from fleethub.infra.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class Orchestrator:
    events: EventBus
    registry: AgentSessionRegistry
    services: ServiceController
    lifecycle: ContainerLifecycle
    migration: MigrationEngine
    rename: RenameEngine
    prober: HostProber
    reconciler: SessionReconciler
    jobs: JobTable
    locks: ContainerLocks
    tasks: TaskTracker
    runtimes: Callable[[Host], HostRuntime]
    _background: list[asyncio.Task] = field(default_factory=list)

    def start(self) -> None:
        """Start the event drain loop and the coordinators."""
        self._background = [
            asyncio.create_task(self.events.run(), name="event-bus"),
            asyncio.create_task(self.prober.run(), name="host-prober"),
            asyncio.create_task(self.reconciler.run(), name="session-reconciler"),
        ]

    async def shutdown(self) -> None:
        """Cancel jobs and loops, then publish what is still queued."""
        self.prober.stop()
        self.reconciler.stop()
        await self.tasks.shutdown()
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []
        await self.events.flush()

    async def forget_host(self, host_id: str) -> None:
        """Drop the cached host agent client of a removed host."""
        forget = getattr(self.runtimes, "forget", None)
        if forget is not None:
            await forget(host_id)


def build_orchestrator(
    session_factory: SessionFactory,
    events: EventBus,
    runtimes: Callable[[Host], HostRuntime],
) -> Orchestrator:
    settings = get_settings()
    retry = {
        "max_retries": settings.host_agent.max_retries,
        "retry_base_delay": settings.host_agent.retry_base_delay,
    }

    jobs = JobTable(
        retention_seconds=settings.job.retention_seconds,
        retention_maxsize=settings.job.retention_maxsize,
    )
    locks = ContainerLocks()
    tasks = TaskTracker()
    registry = AgentSessionRegistry(
        session_factory, events, outbox_maxsize=settings.agent.outbox_maxsize
    )

    return Orchestrator(
        events=events,
        registry=registry,
        services=ServiceController(
            registry, events, tasks, grace_interval=settings.stack.grace_interval
        ),
        lifecycle=ContainerLifecycle(
            session_factory, runtimes, registry, events, jobs, locks, tasks, **retry
        ),
        migration=MigrationEngine(
            session_factory,
            runtimes,
            registry,
            events,
            jobs,
            locks,
            tasks,
            verify_timeout=settings.migration.verify_timeout,
            progress_interval=settings.migration.progress_interval,
            throughput_alpha=settings.migration.throughput_alpha,
            throughput_min_interval=settings.migration.throughput_min_interval,
            **retry,
        ),
        rename=RenameEngine(
            session_factory,
            runtimes,
            registry,
            events,
            jobs,
            locks,
            tasks,
            verify_timeout=settings.migration.verify_timeout,
            **retry,
        ),
        prober=HostProber(session_factory, runtimes, events, timeout=settings.probe.timeout),
        reconciler=SessionReconciler(
            session_factory,
            registry,
            jobs,
            stale_threshold=settings.agent.stale_threshold,
            start_grace=settings.agent.start_grace,
        ),
        jobs=jobs,
        locks=locks,
        tasks=tasks,
        runtimes=runtimes,
    )


_orchestrator: Orchestrator | None = None


def init_orchestrator(
    session_factory: SessionFactory,
    events: EventBus,
    runtimes: Callable[[Host], HostRuntime],
) -> Orchestrator:
    global _orchestrator
    _orchestrator = build_orchestrator(session_factory, events, runtimes)
    return _orchestrator


def get_orchestrator() -> Orchestrator:
    """FastAPI dependency returning the process-wide orchestrator."""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized")
    return _orchestrator


async def close_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None
