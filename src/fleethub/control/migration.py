"""Migration engine: move a container and its workspace between hosts.

Phases (strictly forward):
    stopping -> exporting -> transferring -> transferring_workspace
    -> importing -> importing_workspace -> starting -> verifying -> complete

Terminal alternatives: failed, cancelled. The container keeps its source
host until the ownership flip right before complete, so a failed or
cancelled migration leaves it where it was (restarted if it was stopped).

Artifacts are relayed chunk by chunk from the source host agent to the
destination host agent; the orchestrator never buffers a whole artifact.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from uuid import uuid4

from fleethub.app.config import get_settings
from fleethub.app.logging import set_job_id
from fleethub.app.metrics.collector import (
    MIGRATION_BYTES_TOTAL,
    MIGRATION_DURATION,
    MIGRATIONS_TOTAL,
)
from fleethub.control.jobs import (
    ContainerLocks,
    JobCancelled,
    JobEngineBase,
    JobTable,
    MigrationJob,
)
from fleethub.control.registry import AgentSession, AgentSessionRegistry, SessionFactory
from fleethub.control.tasks import TaskTracker
from fleethub.core.domain import (
    ArtifactKind,
    HostStatus,
    JobKind,
    JobPhase,
    ThroughputEstimator,
    progress_pct,
    workspace_name_for,
)
from fleethub.core.errors import (
    HostUnreachableError,
    InvalidMigrationError,
    JobNotFoundError,
    NoActiveJobError,
)
from fleethub.core.events import MigrationProgressEvent
from fleethub.core.interfaces import HostRuntime
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import Host, utc_now
from fleethub.core.retryable import describe_error
from fleethub.infra.event_bus import EventBus
from fleethub.services import container_service, host_service

logger = logging.getLogger(__name__)

_settings = get_settings()

MIGRATION_NOTICE = "The container will be stopped on its source host for the duration of the migration"


class MigrationError(Exception):
    """A migration step failed for a reason other than the host agent call itself."""


class MigrationEngine(JobEngineBase):
    def __init__(
        self,
        session_factory: SessionFactory,
        runtimes: Callable[[Host], HostRuntime],
        registry: AgentSessionRegistry,
        events: EventBus,
        jobs: JobTable,
        locks: ContainerLocks,
        tasks: TaskTracker,
        verify_timeout: float = 60.0,
        progress_interval: float = 0.25,
        throughput_alpha: float = 0.4,
        throughput_min_interval: float = 0.5,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(max_retries, retry_base_delay)
        self._session_factory = session_factory
        self._runtimes = runtimes
        self._registry = registry
        self._events = events
        self._jobs = jobs
        self._locks = locks
        self._tasks = tasks
        self._verify_timeout = verify_timeout
        self._progress_interval = progress_interval
        self._throughput_alpha = throughput_alpha
        self._throughput_min_interval = throughput_min_interval
        self._clock = clock
        # transfer_id -> clock value of the last published streaming progress
        self._last_progress: dict[str, float] = {}

    # =========================================================================
    # Public operations
    # =========================================================================

    async def migrate(self, container_id: str, destination_host_id: str) -> MigrationJob:
        """Validate and start a migration in the background.

        Validation never mutates anything.

        Raises:
            ContainerNotFoundError, HostNotFoundError
            InvalidMigrationError: Destination is the current host
            HostUnreachableError: Destination is not online
            ContainerBusyError: Another job owns the container
        """
        async with self._session_factory() as db:
            container = await container_service.get_container(db, container_id)
            destination = await host_service.get_host(db, destination_host_id)

        if destination.id == container.host_id:
            raise InvalidMigrationError()
        if destination.status != HostStatus.ONLINE:
            raise HostUnreachableError()

        job = MigrationJob(
            container_id=container.id,
            transfer_id=str(uuid4()),
            source_host_id=container.host_id,
            destination_host_id=destination.id,
            container_name=container.container_name,
            workspace_name=workspace_name_for(
                container.container_name, _settings.container.workspace_suffix
            ),
            throughput=ThroughputEstimator(
                alpha=self._throughput_alpha,
                min_interval=self._throughput_min_interval,
                clock=self._clock,
            ),
        )
        # Lifecycle start/stop/delete check for an active job under the same lock
        async with self._locks.get(container.id):
            self._jobs.claim(job)
            try:
                async with self._session_factory() as db:
                    await container_service.set_active_job(
                        db, container.id, JobKind.MIGRATION, job.transfer_id
                    )
            except Exception:
                self._jobs.release(job)
                raise

        logger.info(
            "Migration requested",
            extra={
                "event": LogEvent.OPERATION_STARTED,
                "component": Component.MIGRATION,
                "container_id": container.id,
                "job_id": job.transfer_id,
                "source_host_id": job.source_host_id,
                "destination_host_id": job.destination_host_id,
            },
        )
        self._tasks.spawn(self._run(job), name=f"migration-{job.transfer_id}")
        return job

    def cancel(self, container_id: str) -> MigrationJob:
        """Request cancellation of the container's active migration.

        Raises:
            NoActiveJobError: No migration is running (or it already committed)
        """
        job = self._jobs.active(container_id)
        if not isinstance(job, MigrationJob) or job.committed or job.is_terminal:
            raise NoActiveJobError()

        job.request_cancel()
        logger.info(
            "Migration cancellation requested",
            extra={
                "event": LogEvent.MIGRATION_CANCELLED,
                "component": Component.MIGRATION,
                "container_id": container_id,
                "job_id": job.transfer_id,
                "phase": job.phase,
            },
        )
        return job

    def status(self, container_id: str) -> MigrationJob:
        """Active or recently finished migration of a container.

        Raises:
            JobNotFoundError
        """
        job = self._jobs.get(container_id, JobKind.MIGRATION)
        if job is None:
            raise JobNotFoundError("No migration found for container")
        return job

    # =========================================================================
    # Job execution
    # =========================================================================

    async def _run(self, job: MigrationJob) -> None:
        set_job_id(job.transfer_id)
        started = self._clock()
        source: HostRuntime | None = None
        destination: HostRuntime | None = None
        source_stopped = False
        destination_touched = False

        try:
            async with self._session_factory() as db:
                source_host = await host_service.get_host(db, job.source_host_id)
                destination_host = await host_service.get_host(db, job.destination_host_id)
            source = self._runtimes(source_host)
            destination = self._runtimes(destination_host)

            await self._enter(job, JobPhase.STOPPING)
            await self._retry(lambda: source.stop_container(job.container_name))
            source_stopped = True

            await self._enter(job, JobPhase.EXPORTING)
            info = await source.export_container(
                job.transfer_id, job.container_name, job.workspace_name
            )
            job.rootfs_bytes = info.rootfs_bytes
            job.workspace_bytes = info.workspace_bytes
            job.total_bytes = info.total_bytes

            await self._enter(job, JobPhase.TRANSFERRING)
            destination_touched = True
            await self._relay(job, source, destination, ArtifactKind.ROOTFS)

            await self._enter(job, JobPhase.TRANSFERRING_WORKSPACE)
            await self._relay(job, source, destination, ArtifactKind.WORKSPACE)

            await self._enter(job, JobPhase.IMPORTING)
            await self._retry(
                lambda: destination.import_artifact(
                    job.transfer_id, ArtifactKind.ROOTFS, job.container_name, job.workspace_name
                )
            )

            await self._enter(job, JobPhase.IMPORTING_WORKSPACE)
            await self._retry(
                lambda: destination.import_artifact(
                    job.transfer_id, ArtifactKind.WORKSPACE, job.container_name, job.workspace_name
                )
            )

            await self._enter(job, JobPhase.STARTING)
            starting_since = self._registry.now()
            await self._retry(lambda: destination.start_container(job.container_name))

            await self._enter(job, JobPhase.VERIFYING)
            session = await self._wait_for_agent(job, starting_since)
            if session is None:
                raise MigrationError(
                    f"Agent did not reconnect within {self._verify_timeout:g}s on the destination host"
                )

            async with self._locks.get(job.container_id):
                self._check_cancelled(job)
                async with self._session_factory() as db:
                    await container_service.set_host(
                        db, job.container_id, job.destination_host_id
                    )
                job.committed = True

            await self._reclaim(job, source, destination)
            await self._finish(job, JobPhase.COMPLETE, started)

        except Exception as e:
            # A cancel request wins over whatever error it caused downstream
            cancelled = job.cancel_requested and not job.committed
            if not cancelled:
                logger.error(
                    "Migration failed in phase %s: %s",
                    job.phase,
                    e,
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "component": Component.MIGRATION,
                        "container_id": job.container_id,
                        "job_id": job.transfer_id,
                        "phase": job.phase,
                    },
                )
            await self._rollback(job, source, destination, source_stopped, destination_touched)
            if cancelled:
                await self._finish(job, JobPhase.CANCELLED, started)
            else:
                await self._finish(job, JobPhase.FAILED, started, error=describe_error(e))
        finally:
            self._last_progress.pop(job.transfer_id, None)

    def _check_cancelled(self, job: MigrationJob) -> None:
        if job.cancel_requested and not job.committed:
            raise JobCancelled()

    async def _wait_for_agent(self, job: MigrationJob, newer_than: float) -> AgentSession | None:
        """Wait for the agent on the destination, returning early on cancel."""
        reconnected = asyncio.create_task(
            self._registry.wait_for_session(
                job.container_id, newer_than=newer_than, timeout=self._verify_timeout
            )
        )
        cancelled = asyncio.create_task(job.cancel_event.wait())
        try:
            await asyncio.wait({reconnected, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reconnected, cancelled):
                task.cancel()
            await asyncio.gather(reconnected, cancelled, return_exceptions=True)

        self._check_cancelled(job)
        return reconnected.result()

    async def _enter(self, job: MigrationJob, phase: JobPhase) -> None:
        self._check_cancelled(job)
        job.phase = phase
        logger.info(
            "Migration phase %s",
            phase,
            extra={
                "event": LogEvent.MIGRATION_PHASE,
                "component": Component.MIGRATION,
                "container_id": job.container_id,
                "job_id": job.transfer_id,
                "phase": phase,
            },
        )
        self._publish(job)

    async def _relay(
        self,
        job: MigrationJob,
        source: HostRuntime,
        destination: HostRuntime,
        kind: ArtifactKind,
    ) -> None:
        async def chunks() -> AsyncIterator[bytes]:
            async with aclosing(source.stream_artifact(job.transfer_id, kind)) as stream:
                async for chunk in stream:
                    self._check_cancelled(job)
                    job.bytes_transferred += len(chunk)
                    MIGRATION_BYTES_TOTAL.labels(artifact=kind).inc(len(chunk))
                    self._report_streaming(job)
                    yield chunk

        await destination.upload_artifact(job.transfer_id, kind, chunks())

    def _report_streaming(self, job: MigrationJob) -> None:
        job.throughput.update(job.bytes_transferred)
        now = self._clock()
        last = self._last_progress.get(job.transfer_id)
        if last is not None and now - last < self._progress_interval:
            return
        self._publish(job)

    @staticmethod
    def _phase_bounds(job: MigrationJob) -> tuple[int, int]:
        """Bytes done/total within the current streaming phase."""
        if job.phase == JobPhase.TRANSFERRING:
            return min(job.bytes_transferred, job.rootfs_bytes), job.rootfs_bytes
        if job.phase == JobPhase.TRANSFERRING_WORKSPACE:
            return max(job.bytes_transferred - job.rootfs_bytes, 0), job.workspace_bytes
        return 0, 0

    def _publish(self, job: MigrationJob) -> None:
        done, total = self._phase_bounds(job)
        pct = progress_pct(job.phase, done, total)
        if pct is not None:
            job.progress_pct = max(job.progress_pct, pct)
        job.bytes_per_sec = job.throughput.rate
        job.eta_secs = job.throughput.eta(job.bytes_transferred, job.total_bytes)
        self._last_progress[job.transfer_id] = self._clock()

        self._events.emit(
            MigrationProgressEvent(
                app_id=job.container_id,
                transfer_id=job.transfer_id,
                phase=job.phase,
                progress_pct=job.progress_pct,
                bytes_transferred=job.bytes_transferred,
                total_bytes=job.total_bytes,
                bytes_per_sec=job.bytes_per_sec,
                eta_secs=job.eta_secs,
                error=job.error,
            )
        )

    async def _rollback(
        self,
        job: MigrationJob,
        source: HostRuntime | None,
        destination: HostRuntime | None,
        source_stopped: bool,
        destination_touched: bool,
    ) -> None:
        """Undo a failed or cancelled migration, best effort."""
        tid = job.transfer_id
        if destination is not None and destination_touched:
            await self._best_effort(
                tid, "discard destination artifacts", lambda: destination.discard_transfer(tid)
            )
            if job.phase in (
                JobPhase.IMPORTING,
                JobPhase.IMPORTING_WORKSPACE,
                JobPhase.STARTING,
                JobPhase.VERIFYING,
            ):
                await self._best_effort(
                    tid,
                    "delete destination container",
                    lambda: destination.delete_container(job.container_name),
                )
        if source is not None:
            await self._best_effort(
                tid, "discard source artifacts", lambda: source.discard_transfer(tid)
            )
            if source_stopped:
                await self._best_effort(
                    tid,
                    "restart source container",
                    lambda: source.start_container(job.container_name),
                )

    async def _reclaim(
        self, job: MigrationJob, source: HostRuntime, destination: HostRuntime
    ) -> None:
        """Free source container and transfer artifacts after the flip."""
        tid = job.transfer_id
        await self._best_effort(
            tid, "delete source container", lambda: source.delete_container(job.container_name)
        )
        await self._best_effort(tid, "discard source artifacts", lambda: source.discard_transfer(tid))
        await self._best_effort(
            tid, "discard destination artifacts", lambda: destination.discard_transfer(tid)
        )

    async def _finish(
        self,
        job: MigrationJob,
        phase: JobPhase,
        started: float,
        error: str | None = None,
    ) -> None:
        job.phase = phase
        job.error = error
        job.finished_at = utc_now()
        self._publish(job)

        try:
            async with self._session_factory() as db:
                await container_service.set_active_job(db, job.container_id, None)
        except Exception as e:
            logger.warning(
                "Failed to clear job marker: %s",
                e,
                extra={
                    "event": LogEvent.DB_ERROR,
                    "component": Component.MIGRATION,
                    "container_id": job.container_id,
                    "job_id": job.transfer_id,
                },
            )
        self._jobs.finish(job)

        MIGRATIONS_TOTAL.labels(result=phase).inc()
        MIGRATION_DURATION.labels(result=phase).observe(self._clock() - started)
        logger.info(
            "Migration %s",
            phase,
            extra={
                "event": LogEvent.MIGRATION_PHASE,
                "component": Component.MIGRATION,
                "container_id": job.container_id,
                "job_id": job.transfer_id,
                "phase": phase,
                "bytes_transferred": job.bytes_transferred,
                "error": error,
            },
        )
