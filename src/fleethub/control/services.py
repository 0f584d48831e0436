"""Service component controller.

Dispatches start/stop commands for one component (app, db, code_server)
to the container's agent, and sequences the app+db stack.

Commands are fire-and-forget: the acknowledgement arrives later as an
agent:service-command event when the agent reports the new state.
"""

import asyncio
import logging

from fleethub.app.metrics.collector import SERVICE_COMMANDS_TOTAL
from fleethub.control.jobs import ContainerLocks
from fleethub.control.registry import AgentSession, AgentSessionRegistry
from fleethub.control.tasks import TaskTracker
from fleethub.core.domain import (
    CommandOutcome,
    ServiceAction,
    ServiceComponent,
    StackStatus,
    derive_stack_status,
)
from fleethub.core.errors import AgentUnavailableError, FleetHubError, InvalidComponentError
from fleethub.core.events import ServiceCommandEvent
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.protocol import ServiceCommandMessage
from fleethub.infra.event_bus import EventBus

logger = logging.getLogger(__name__)

_FAILED_OUTCOME = {
    ServiceAction.START: CommandOutcome.STARTED,
    ServiceAction.STOP: CommandOutcome.STOPPED,
}

# db must be up before app starts; app must be down before db stops
STACK_START = ((ServiceComponent.DB, ServiceAction.START), (ServiceComponent.APP, ServiceAction.START))
STACK_STOP = ((ServiceComponent.APP, ServiceAction.STOP), (ServiceComponent.DB, ServiceAction.STOP))


def parse_component(value: str | ServiceComponent) -> ServiceComponent:
    try:
        return ServiceComponent(value)
    except ValueError:
        raise InvalidComponentError() from None


class ServiceController:
    def __init__(
        self,
        registry: AgentSessionRegistry,
        events: EventBus,
        tasks: TaskTracker,
        grace_interval: float = 0.5,
    ) -> None:
        self._registry = registry
        self._events = events
        self._tasks = tasks
        self._grace_interval = grace_interval
        self._stack_locks = ContainerLocks()

    def _require_session(self, container_id: str) -> AgentSession:
        session = self._registry.get(container_id)
        if session is None:
            raise AgentUnavailableError()
        return session

    def _dispatch(self, container_id: str, component: ServiceComponent, action: ServiceAction) -> None:
        self._require_session(container_id)
        message = ServiceCommandMessage(service_type=component, action=action)
        if not self._registry.send(container_id, message):
            SERVICE_COMMANDS_TOTAL.labels(component=component, action=action, result="dropped").inc()
            raise AgentUnavailableError("Agent command queue is full")

        SERVICE_COMMANDS_TOTAL.labels(component=component, action=action, result="dispatched").inc()
        logger.info(
            "Dispatched %s %s",
            action,
            component,
            extra={
                "event": LogEvent.COMMAND_DISPATCHED,
                "component": Component.SERVICES,
                "container_id": container_id,
            },
        )

    def start(self, container_id: str, component: str | ServiceComponent) -> None:
        """Ask the agent to start one component.

        Raises:
            InvalidComponentError: Unknown component name
            AgentUnavailableError: No live session (or its queue is full)
        """
        self._dispatch(container_id, parse_component(component), ServiceAction.START)

    def stop(self, container_id: str, component: str | ServiceComponent) -> None:
        self._dispatch(container_id, parse_component(component), ServiceAction.STOP)

    # =========================================================================
    # Stack saga
    # =========================================================================

    def start_stack(self, container_id: str) -> asyncio.Task:
        """Start db, then app after the grace interval (background)."""
        return self._spawn_stack(container_id, STACK_START)

    def stop_stack(self, container_id: str) -> asyncio.Task:
        """Stop app, then db after the grace interval (background)."""
        return self._spawn_stack(container_id, STACK_STOP)

    def _spawn_stack(
        self,
        container_id: str,
        steps: tuple[tuple[ServiceComponent, ServiceAction], ...],
    ) -> asyncio.Task:
        self._require_session(container_id)
        return self._tasks.spawn(
            self._run_stack(container_id, steps),
            name=f"stack-{steps[0][1]}-{container_id}",
        )

    async def _run_stack(
        self,
        container_id: str,
        steps: tuple[tuple[ServiceComponent, ServiceAction], ...],
    ) -> bool:
        # Sagas of one container never interleave
        async with self._stack_locks.get(container_id):
            for index, (component, action) in enumerate(steps):
                if index > 0:
                    await asyncio.sleep(self._grace_interval)
                try:
                    self._dispatch(container_id, component, action)
                except FleetHubError as e:
                    logger.warning(
                        "Stack %s aborted at %s: %s",
                        action,
                        component,
                        e.message,
                        extra={
                            "event": LogEvent.OPERATION_FAILED,
                            "component": Component.SERVICES,
                            "container_id": container_id,
                        },
                    )
                    self._events.emit(
                        ServiceCommandEvent(
                            app_id=container_id,
                            service_type=component,
                            action=_FAILED_OUTCOME[action],
                            success=False,
                        )
                    )
                    return False
        return True

    def stack_status(self, container_id: str) -> StackStatus | None:
        """Combined app+db status from the last metrics snapshot."""
        metrics = self._registry.metrics_for(container_id)
        if metrics is None:
            return None
        return derive_stack_status(metrics.app_status, metrics.db_status)
