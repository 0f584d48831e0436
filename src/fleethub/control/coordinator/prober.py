"""HostProber - periodic reachability probe of every host agent.

Probes run concurrently with a per-host timeout. Status and latency are
written only when they change; a hosts:status event is published for
every probe so observers see fresh latency.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from fleethub.app.config import get_settings
from fleethub.app.metrics.collector import HOST_PROBE_DURATION, HOSTS_BY_STATUS
from fleethub.control.coordinator.base import CoordinatorBase
from fleethub.control.registry import SessionFactory
from fleethub.core.domain import HostStatus
from fleethub.core.events import HostStatusEvent
from fleethub.core.interfaces import HostRuntime
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import Host
from fleethub.infra.event_bus import EventBus
from fleethub.services import host_service

logger = logging.getLogger(__name__)

_settings = get_settings()


class HostProber(CoordinatorBase):
    INTERVAL = _settings.coordinator.probe_interval

    def __init__(
        self,
        session_factory: SessionFactory,
        runtimes: Callable[[Host], HostRuntime],
        events: EventBus,
        timeout: float = _settings.probe.timeout,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._runtimes = runtimes
        self._events = events
        self._timeout = timeout

    async def probe(self, host: Host) -> tuple[HostStatus, float | None]:
        """Probe one host. Any failure or timeout means offline."""
        start = time.monotonic()
        try:
            latency_ms = await asyncio.wait_for(self._runtimes(host).probe(), timeout=self._timeout)
        except Exception as e:
            HOST_PROBE_DURATION.labels(result="offline").observe(time.monotonic() - start)
            logger.debug("Probe of host %s failed: %s", host.id, e)
            return HostStatus.OFFLINE, None
        HOST_PROBE_DURATION.labels(result="online").observe(time.monotonic() - start)
        return HostStatus.ONLINE, round(latency_ms, 1)

    async def tick(self) -> None:
        async with self._session_factory() as db:
            hosts = await host_service.list_hosts(db)
        if not hosts:
            return

        results = await asyncio.gather(*(self.probe(host) for host in hosts))

        counts = {status: 0 for status in HostStatus}
        async with self._session_factory() as db:
            for host, (status, latency_ms) in zip(hosts, results, strict=True):
                counts[status] += 1
                changed = await host_service.set_reachability(db, host.id, status, latency_ms)
                if changed and host.status != status:
                    logger.info(
                        "Host %s is %s",
                        host.name,
                        status,
                        extra={
                            "event": LogEvent.STATE_CHANGED,
                            "component": Component.PROBER,
                            "host_id": host.id,
                            "status": status,
                        },
                    )
                self._events.emit(
                    HostStatusEvent(host_id=host.id, status=status, latency_ms=latency_ms)
                )

        for status, count in counts.items():
            HOSTS_BY_STATUS.labels(status=status).set(count)
        logger.debug(
            "Probed %d hosts",
            len(hosts),
            extra={"event": LogEvent.PROBE_COMPLETE, "component": Component.PROBER},
        )
