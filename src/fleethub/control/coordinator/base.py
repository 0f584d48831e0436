"""Coordinator infrastructure - base class for periodic control loops.

Configuration via CoordinatorConfig (COORDINATOR_ env prefix).

The orchestrator runs as a single process (agent sessions and jobs live in
its memory), so coordinators run unconditionally; there is no leader
election. wake() triggers an immediate tick, e.g. after a host is added.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from fleethub.app.config import get_settings
from fleethub.app.metrics.collector import COORDINATOR_TICK_DURATION, COORDINATOR_TICK_TOTAL
from fleethub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_settings = get_settings()
_coordinator_config = _settings.coordinator


class CoordinatorBase(ABC):
    """Base class for coordinators: tick, then sleep until interval or wake."""

    INTERVAL: float
    MIN_INTERVAL: float = _coordinator_config.min_interval

    def __init__(self) -> None:
        self._running = False
        self._wake_event = asyncio.Event()
        self._last_tick = 0.0

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def running(self) -> bool:
        return self._running

    def wake(self) -> None:
        """Run the next tick without waiting for the interval."""
        self._wake_event.set()

    def stop(self) -> None:
        self._running = False
        self._wake_event.set()

    @abstractmethod
    async def tick(self) -> None:
        """Execute one cycle."""
        pass

    async def run(self) -> None:
        """Main coordinator loop."""
        self._running = True
        logger.info(
            "Starting coordinator %s",
            self.name,
            extra={"event": LogEvent.APP_STARTED, "coordinator": self.name},
        )

        try:
            while self._running:
                await self._throttle()
                if not await self._execute_tick():
                    break
                await self._wait_for_wake(self.INTERVAL)
        finally:
            self._running = False
            logger.info(
                "Coordinator %s stopped",
                self.name,
                extra={"event": LogEvent.APP_STOPPED, "coordinator": self.name},
            )

    async def _throttle(self) -> None:
        """Ensure minimum interval between ticks."""
        elapsed = time.monotonic() - self._last_tick
        if elapsed < self.MIN_INTERVAL:
            await asyncio.sleep(self.MIN_INTERVAL - elapsed)

    async def _execute_tick(self) -> bool:
        """Execute tick. Returns False if cancelled."""
        start = time.monotonic()
        try:
            await self.tick()
            COORDINATOR_TICK_TOTAL.labels(coordinator=self.name, result="ok").inc()
            return True
        except asyncio.CancelledError:
            return False
        except Exception as e:
            COORDINATOR_TICK_TOTAL.labels(coordinator=self.name, result="error").inc()
            logger.exception("Error in tick: %s", e, extra={"coordinator": self.name})
            return True
        finally:
            self._last_tick = time.monotonic()
            COORDINATOR_TICK_DURATION.labels(coordinator=self.name).observe(
                self._last_tick - start
            )

    async def _wait_for_wake(self, interval: float) -> None:
        """Wait for interval or until wake() is called."""
        try:
            await asyncio.wait_for(self._wake_event.wait(), timeout=interval)
        except TimeoutError:
            pass
        finally:
            self._wake_event.clear()
