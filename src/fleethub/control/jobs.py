"""In-memory job table, per-container locks and shared job plumbing.

Jobs live in process memory only. The active_job marker persisted on the
container lets startup recovery detect jobs interrupted by a restart.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from cachetools import TTLCache

from fleethub.app.metrics.collector import JOBS_ACTIVE
from fleethub.core.domain import JobKind, JobPhase, ThroughputEstimator, is_terminal
from fleethub.core.errors import ContainerBusyError
from fleethub.core.logging_schema import LogEvent
from fleethub.core.models import utc_now
from fleethub.core.retryable import with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobCancelled(Exception):
    """Raised inside a job when cancellation was requested."""


@dataclass
class MigrationJob:
    container_id: str
    transfer_id: str
    source_host_id: str
    destination_host_id: str
    container_name: str
    workspace_name: str
    phase: JobPhase = JobPhase.STOPPING
    rootfs_bytes: int = 0
    workspace_bytes: int = 0
    # Cumulative across both artifacts, never decreases
    bytes_transferred: int = 0
    total_bytes: int = 0
    progress_pct: int = 0
    bytes_per_sec: float | None = None
    eta_secs: int | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    # Set once ownership moved to the destination; cancel is no longer possible
    committed: bool = False
    throughput: ThroughputEstimator = field(default_factory=ThroughputEstimator, repr=False)

    kind = JobKind.MIGRATION

    @property
    def job_id(self) -> str:
        return self.transfer_id

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    def request_cancel(self) -> None:
        self.cancel_event.set()

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.phase)


@dataclass
class RenameJob:
    container_id: str
    job_id: str
    old_slug: str
    new_slug: str
    old_name: str
    new_name: str
    old_container_name: str
    new_container_name: str
    phase: JobPhase = JobPhase.STOPPING
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    kind = JobKind.RENAME

    @property
    def slug_changed(self) -> bool:
        return self.new_slug != self.old_slug

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.phase)


Job = MigrationJob | RenameJob

_BUSY_MESSAGES = {
    JobKind.MIGRATION: "Migration already in progress",
    JobKind.RENAME: "Rename in progress",
}


class JobTable:
    """At most one active job per container, plus recently finished jobs."""

    def __init__(
        self,
        retention_seconds: float = 300.0,
        retention_maxsize: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._active: dict[str, Job] = {}
        self._finished: TTLCache[tuple[JobKind, str], Job] = TTLCache(
            maxsize=retention_maxsize, ttl=retention_seconds, timer=timer
        )

    def claim(self, job: Job) -> None:
        """Register job as the container's active job.

        Raises:
            ContainerBusyError: If the container already has an active job
        """
        current = self._active.get(job.container_id)
        if current is not None:
            raise ContainerBusyError(_BUSY_MESSAGES[current.kind])
        self._active[job.container_id] = job
        JOBS_ACTIVE.labels(kind=job.kind).inc()

    def release(self, job: Job) -> None:
        """Drop an active job without retaining it (failed to start)."""
        if self._active.get(job.container_id) is job:
            del self._active[job.container_id]
            JOBS_ACTIVE.labels(kind=job.kind).dec()

    def finish(self, job: Job) -> None:
        """Move a terminal job to the retention cache."""
        self.release(job)
        self._finished[(job.kind, job.container_id)] = job

    def active(self, container_id: str) -> Job | None:
        return self._active.get(container_id)

    def active_jobs(self) -> list[Job]:
        return list(self._active.values())

    def get(self, container_id: str, kind: JobKind) -> Job | None:
        """Active job of that kind, else the most recent finished one."""
        job = self._active.get(container_id)
        if job is not None and job.kind == kind:
            return job
        return self._finished.get((kind, container_id))


class ContainerLocks:
    """One asyncio.Lock per container."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, container_id: str) -> asyncio.Lock:
        lock = self._locks.get(container_id)
        if lock is None:
            lock = self._locks[container_id] = asyncio.Lock()
        return lock

    def discard(self, container_id: str) -> None:
        lock = self._locks.get(container_id)
        if lock is not None and not lock.locked():
            del self._locks[container_id]


class JobEngineBase:
    """Helpers shared by the migration and rename engines."""

    def __init__(self, max_retries: int = 3, retry_base_delay: float = 1.0) -> None:
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    async def _retry(self, coro_factory: Callable[[], Awaitable[T]]) -> T:
        """Run an idempotent host agent call with backoff on transient errors."""
        return await with_retry(
            coro_factory,
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
        )

    async def _best_effort(
        self, job_id: str, description: str, coro_factory: Callable[[], Awaitable[object]]
    ) -> bool:
        """Run a cleanup step; failures are logged, never raised."""
        try:
            await self._retry(coro_factory)
            return True
        except Exception as e:
            logger.warning(
                "Cleanup step failed: %s",
                description,
                extra={
                    "event": LogEvent.CLEANUP_FAILED,
                    "job_id": job_id,
                    "step": description,
                    "error": str(e),
                },
            )
            return False
