"""Agent session registry.

Tracks the live WebSocket session of every in-container agent, applies
what agents report (status, metrics, service state) and is the single
writer of agent-driven container status changes.

Session lifecycle:
    auth frame -> authenticate() -> register() -> handle_message()* -> unregister()

A new session for a container replaces the previous one; the replaced
connection is told to shut down and its later unregister() is a no-op.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.app.metrics.collector import AGENT_AUTH_FAILURES_TOTAL, AGENT_SESSIONS_ACTIVE
from fleethub.core.domain import ContainerStatus, outcome_for_state
from fleethub.core.errors import ContainerNotFoundError, UnauthorizedError
from fleethub.core.events import AgentMetricsEvent, AgentStatusEvent, ServiceCommandEvent
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import Container
from fleethub.core.protocol import (
    AgentErrorMessage,
    AgentMessage,
    AgentMetrics,
    AuthMessage,
    ConfigAckMessage,
    ConfigMessage,
    HeartbeatMessage,
    MetricsMessage,
    PowerPolicyUpdateMessage,
    RegistryMessage,
    ServiceStateChangedMessage,
    ShutdownMessage,
)
from fleethub.core.security import verify_token
from fleethub.infra.event_bus import EventBus
from fleethub.services import container_service

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass(eq=False)
class AgentSession:
    """One authenticated agent connection."""

    container_id: str
    slug: str
    version: str
    connected_at: float
    last_seen: float
    outbox: asyncio.Queue[RegistryMessage]
    session_id: str = field(default_factory=lambda: uuid4().hex)
    metrics: AgentMetrics | None = None

    def send(self, message: RegistryMessage) -> bool:
        """Queue an outbound message. False when the outbox is full."""
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Ask the connection to shut down, discarding anything still queued."""
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(ShutdownMessage())


class AgentSessionRegistry:
    def __init__(
        self,
        session_factory: SessionFactory,
        events: EventBus,
        outbox_maxsize: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._events = events
        self._outbox_maxsize = outbox_maxsize
        self._clock = clock
        self._sessions: dict[str, AgentSession] = {}
        self._changed = asyncio.Condition()

    def now(self) -> float:
        return self._clock()

    def get(self, container_id: str) -> AgentSession | None:
        return self._sessions.get(container_id)

    def is_connected(self, container_id: str) -> bool:
        return container_id in self._sessions

    def sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    def metrics_for(self, container_id: str) -> AgentMetrics | None:
        session = self._sessions.get(container_id)
        return session.metrics if session else None

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def authenticate(self, auth: AuthMessage) -> Container:
        """Look up the container by slug and verify the agent token.

        Raises:
            UnauthorizedError: Unknown slug or wrong token
        """
        async with self._session_factory() as db:
            container = await container_service.get_container_by_slug(db, auth.service_name)

        if container is None or not verify_token(auth.token, container.token_hash):
            AGENT_AUTH_FAILURES_TOTAL.inc()
            logger.warning(
                "Agent authentication failed",
                extra={
                    "event": LogEvent.AGENT_AUTH_FAILED,
                    "component": Component.REGISTRY,
                    "slug": auth.service_name,
                },
            )
            raise UnauthorizedError("Invalid agent credentials")
        return container

    async def register(self, container: Container, auth: AuthMessage) -> AgentSession:
        now = self._clock()
        session = AgentSession(
            container_id=container.id,
            slug=container.slug,
            version=auth.version,
            connected_at=now,
            last_seen=now,
            outbox=asyncio.Queue(maxsize=self._outbox_maxsize),
        )

        previous = self._sessions.get(container.id)
        self._sessions[container.id] = session
        AGENT_SESSIONS_ACTIVE.set(len(self._sessions))
        if previous is not None:
            previous.close()
            logger.info(
                "Agent session replaced",
                extra={
                    "event": LogEvent.AGENT_DISCONNECTED,
                    "component": Component.REGISTRY,
                    "container_id": container.id,
                    "session_id": previous.session_id,
                },
            )

        async with self._session_factory() as db:
            container, first_connect = await container_service.mark_connected(
                db, container.id, auth.version, auth.ip_address
            )

        session.send(self.config_for(container))
        self._events.emit(
            AgentStatusEvent(
                app_id=container.id,
                slug=container.slug,
                status=ContainerStatus.CONNECTED,
                refresh=first_connect,
            )
        )
        logger.info(
            "Agent connected",
            extra={
                "event": LogEvent.AGENT_CONNECTED,
                "component": Component.REGISTRY,
                "container_id": container.id,
                "slug": container.slug,
                "agent_version": auth.version,
                "session_id": session.session_id,
            },
        )

        async with self._changed:
            self._changed.notify_all()
        return session

    async def unregister(self, session: AgentSession, message: str | None = None) -> bool:
        """Remove a session if it is still the container's current one.

        Returns:
            True if the session was current (status moved to disconnected).
        """
        if self._sessions.get(session.container_id) is not session:
            return False
        del self._sessions[session.container_id]
        AGENT_SESSIONS_ACTIVE.set(len(self._sessions))

        logger.info(
            "Agent disconnected",
            extra={
                "event": LogEvent.AGENT_DISCONNECTED,
                "component": Component.REGISTRY,
                "container_id": session.container_id,
                "session_id": session.session_id,
            },
        )
        try:
            await self.record_status(session.container_id, ContainerStatus.DISCONNECTED, message)
        except ContainerNotFoundError:
            # Deleted while connected
            pass
        return True

    def evict(self, container_id: str) -> AgentSession | None:
        """Drop a session without touching the container status (stop/delete)."""
        session = self._sessions.pop(container_id, None)
        if session is not None:
            AGENT_SESSIONS_ACTIVE.set(len(self._sessions))
            session.close()
        return session

    async def wait_for_session(
        self, container_id: str, newer_than: float, timeout: float
    ) -> AgentSession | None:
        """Wait until the container has a session connected after newer_than.

        Returns None on timeout.
        """

        def _fresh() -> AgentSession | None:
            session = self._sessions.get(container_id)
            if session is not None and session.connected_at > newer_than:
                return session
            return None

        try:
            async with asyncio.timeout(timeout):
                async with self._changed:
                    await self._changed.wait_for(lambda: _fresh() is not None)
        except TimeoutError:
            return None
        return _fresh()

    def stale_sessions(self, threshold: float) -> list[AgentSession]:
        """Sessions without any message for longer than threshold seconds."""
        now = self._clock()
        return [s for s in self._sessions.values() if now - s.last_seen > threshold]

    # =========================================================================
    # Inbound messages
    # =========================================================================

    async def handle_message(self, session: AgentSession, message: AgentMessage) -> None:
        session.last_seen = self._clock()

        match message:
            case HeartbeatMessage():
                pass
            case MetricsMessage():
                session.metrics = message.snapshot()
                self._events.emit(
                    AgentMetricsEvent(app_id=session.container_id, **session.metrics.model_dump())
                )
            case ServiceStateChangedMessage():
                base = session.metrics or AgentMetrics()
                session.metrics = base.with_status(message.service_type, message.new_state)
                self._events.emit(
                    ServiceCommandEvent(
                        app_id=session.container_id,
                        service_type=message.service_type,
                        action=outcome_for_state(message.new_state),
                        success=True,
                    )
                )
            case ConfigAckMessage():
                logger.debug(
                    "Config acknowledged (version=%d)",
                    message.config_version,
                    extra={"container_id": session.container_id},
                )
            case AgentErrorMessage():
                logger.warning(
                    "Agent reported error: %s",
                    message.message,
                    extra={
                        "event": LogEvent.AGENT_ERROR,
                        "component": Component.REGISTRY,
                        "container_id": session.container_id,
                    },
                )
                self._events.emit(
                    AgentStatusEvent(
                        app_id=session.container_id,
                        slug=session.slug,
                        status=ContainerStatus.CONNECTED,
                        message=message.message,
                    )
                )
            case AuthMessage():
                logger.warning(
                    "Ignoring repeated auth frame",
                    extra={"component": Component.REGISTRY, "container_id": session.container_id},
                )

    # =========================================================================
    # Outbound messages
    # =========================================================================

    def send(self, container_id: str, message: RegistryMessage) -> bool:
        """Queue a message for the container's agent.

        Returns:
            False if there is no session or its outbox is full.
        """
        session = self._sessions.get(container_id)
        if session is None:
            return False
        if not session.send(message):
            logger.warning(
                "Agent outbox full, dropping %s",
                message.type,
                extra={
                    "event": LogEvent.COMMAND_DROPPED,
                    "component": Component.REGISTRY,
                    "container_id": container_id,
                },
            )
            return False
        return True

    @staticmethod
    def config_for(container: Container) -> ConfigMessage:
        return ConfigMessage(
            config_version=int(container.updated_at.timestamp() * 1000),
            slug=container.slug,
            environment=container.environment,
            enabled=container.enabled,
            frontend=container.frontend,
            apis=container.apis,
            code_server_enabled=container.code_server_enabled,
            idle_timeouts=container.idle_timeouts,
        )

    def push_config(self, container: Container) -> bool:
        return self.send(container.id, self.config_for(container))

    def push_power_policy(self, container: Container) -> bool:
        return self.send(
            container.id, PowerPolicyUpdateMessage(idle_timeouts=container.idle_timeouts)
        )

    # =========================================================================
    # Status
    # =========================================================================

    async def record_status(
        self,
        container_id: str,
        status: ContainerStatus,
        message: str | None = None,
    ) -> Container:
        """Persist a lifecycle status and publish agent:status."""
        async with self._session_factory() as db:
            container = await container_service.set_status(db, container_id, status, message)

        self._events.emit(
            AgentStatusEvent(
                app_id=container.id,
                slug=container.slug,
                status=status,
                message=message,
            )
        )
        logger.info(
            "Container status changed to %s",
            status,
            extra={
                "event": LogEvent.STATE_CHANGED,
                "container_id": container_id,
                "status": status,
                "status_message": message,
            },
        )
        return container
