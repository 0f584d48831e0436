"""Rename engine: change a container's slug and display name.

A slug change re-identifies the container on its host (runtime name,
workspace and agent identity), which needs a stop/start cycle:

    stopping -> importing -> starting -> verifying -> complete

A display-name-only change completes right after the record update.
Any failure restores the record, renames the runtime back and restarts
the original container. Callers poll the job status.
"""

import logging
from collections.abc import Callable
from uuid import uuid4

from fleethub.app.config import get_settings
from fleethub.app.logging import set_job_id
from fleethub.app.metrics.collector import RENAMES_TOTAL
from fleethub.control.jobs import ContainerLocks, JobEngineBase, JobTable, RenameJob
from fleethub.control.registry import AgentSessionRegistry, SessionFactory
from fleethub.control.tasks import TaskTracker
from fleethub.core.domain import JobKind, JobPhase, container_name_for, is_valid_slug
from fleethub.core.errors import (
    InvalidSlugError,
    JobNotFoundError,
    SlugConflictError,
    ValidationFailedError,
)
from fleethub.core.events import RenameProgressEvent
from fleethub.core.interfaces import HostRuntime
from fleethub.core.logging_schema import Component, LogEvent
from fleethub.core.models import Host, utc_now
from fleethub.core.retryable import describe_error
from fleethub.infra.event_bus import EventBus
from fleethub.services import container_service, host_service

logger = logging.getLogger(__name__)

_settings = get_settings()

NAME_MAX_LENGTH = 255


class RenameError(Exception):
    pass


class RenameEngine(JobEngineBase):
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
        self._verify_timeout = verify_timeout

    async def rename(
        self, container_id: str, new_slug: str, new_name: str | None = None
    ) -> RenameJob:
        """Validate and start a rename in the background.

        Raises:
            InvalidSlugError: Checked before any lookup
            ValidationFailedError: Name outside 1..255 characters
            ContainerNotFoundError
            SlugConflictError: Slug used by another container
            ContainerBusyError: Another job owns the container
        """
        if not is_valid_slug(new_slug):
            raise InvalidSlugError()
        if new_name is not None and not 1 <= len(new_name) <= NAME_MAX_LENGTH:
            raise ValidationFailedError(f"Name must be 1-{NAME_MAX_LENGTH} characters")

        async with self._session_factory() as db:
            container = await container_service.get_container(db, container_id)
            if new_slug != container.slug:
                other = await container_service.get_container_by_slug(db, new_slug)
                if other is not None and other.id != container.id:
                    raise SlugConflictError()

        job = RenameJob(
            container_id=container.id,
            job_id=str(uuid4()),
            old_slug=container.slug,
            new_slug=new_slug,
            old_name=container.name,
            new_name=new_name if new_name is not None else container.name,
            old_container_name=container.container_name,
            new_container_name=container_name_for(_settings.container.name_prefix, new_slug),
        )
        async with self._locks.get(container.id):
            self._jobs.claim(job)
            try:
                async with self._session_factory() as db:
                    await container_service.set_active_job(
                        db, container.id, JobKind.RENAME, job.job_id
                    )
            except Exception:
                self._jobs.release(job)
                raise

        logger.info(
            "Rename requested",
            extra={
                "event": LogEvent.OPERATION_STARTED,
                "component": Component.RENAME,
                "container_id": container.id,
                "job_id": job.job_id,
                "old_slug": job.old_slug,
                "new_slug": job.new_slug,
            },
        )
        self._tasks.spawn(self._run(job), name=f"rename-{job.job_id}")
        return job

    def status(self, container_id: str) -> RenameJob:
        job = self._jobs.get(container_id, JobKind.RENAME)
        if job is None:
            raise JobNotFoundError("No rename found for container")
        return job

    async def _run(self, job: RenameJob) -> None:
        set_job_id(job.job_id)
        runtime: HostRuntime | None = None
        stopped = False
        renamed = False
        recorded = False

        try:
            if not job.slug_changed:
                async with self._locks.get(job.container_id):
                    await self._record(job, job.new_slug, job.new_name, job.new_container_name)
                await self._finish(job, JobPhase.COMPLETE)
                return

            async with self._session_factory() as db:
                container = await container_service.get_container(db, job.container_id)
                host = await host_service.get_host(db, container.host_id)
            runtime = self._runtimes(host)

            self._enter(job, JobPhase.STOPPING)
            await self._retry(lambda: runtime.stop_container(job.old_container_name))
            stopped = True

            self._enter(job, JobPhase.IMPORTING)
            await runtime.rename_container(
                job.old_container_name, job.new_container_name, job.new_slug
            )
            renamed = True

            async with self._locks.get(job.container_id):
                await self._record(job, job.new_slug, job.new_name, job.new_container_name)
            recorded = True

            self._enter(job, JobPhase.STARTING)
            starting_since = self._registry.now()
            await self._retry(lambda: runtime.start_container(job.new_container_name))

            self._enter(job, JobPhase.VERIFYING)
            session = await self._registry.wait_for_session(
                job.container_id, newer_than=starting_since, timeout=self._verify_timeout
            )
            if session is None:
                raise RenameError(f"Agent did not reconnect within {self._verify_timeout:g}s")

            await self._finish(job, JobPhase.COMPLETE)

        except Exception as e:
            logger.error(
                "Rename failed in phase %s: %s",
                job.phase,
                e,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "component": Component.RENAME,
                    "container_id": job.container_id,
                    "job_id": job.job_id,
                    "phase": job.phase,
                },
            )
            await self._rollback(job, runtime, stopped, renamed, recorded)
            await self._finish(job, JobPhase.FAILED, error=describe_error(e))

    async def _record(self, job: RenameJob, slug: str, name: str, container_name: str) -> None:
        async with self._session_factory() as db:
            await container_service.set_identity(
                db, job.container_id, slug=slug, name=name, container_name=container_name
            )

    async def _rollback(
        self,
        job: RenameJob,
        runtime: HostRuntime | None,
        stopped: bool,
        renamed: bool,
        recorded: bool,
    ) -> None:
        jid = job.job_id
        if recorded:
            await self._best_effort(
                jid,
                "restore record",
                lambda: self._record(job, job.old_slug, job.old_name, job.old_container_name),
            )
        if runtime is None:
            return
        if renamed:
            await self._best_effort(
                jid, "stop renamed container", lambda: runtime.stop_container(job.new_container_name)
            )
            await self._best_effort(
                jid,
                "rename container back",
                lambda: runtime.rename_container(
                    job.new_container_name, job.old_container_name, job.old_slug
                ),
            )
        if stopped:
            await self._best_effort(
                jid, "restart original container", lambda: runtime.start_container(job.old_container_name)
            )

    def _enter(self, job: RenameJob, phase: JobPhase) -> None:
        job.phase = phase
        logger.info(
            "Rename phase %s",
            phase,
            extra={
                "event": LogEvent.RENAME_PHASE,
                "component": Component.RENAME,
                "container_id": job.container_id,
                "job_id": job.job_id,
                "phase": phase,
            },
        )
        self._publish(job)

    def _publish(self, job: RenameJob) -> None:
        self._events.emit(
            RenameProgressEvent(
                app_id=job.container_id,
                job_id=job.job_id,
                phase=job.phase,
                new_slug=job.new_slug,
                error=job.error,
            )
        )

    async def _finish(self, job: RenameJob, phase: JobPhase, error: str | None = None) -> None:
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
                    "component": Component.RENAME,
                    "container_id": job.container_id,
                    "job_id": job.job_id,
                },
            )
        self._jobs.finish(job)
        RENAMES_TOTAL.labels(result=phase).inc()
        logger.info(
            "Rename %s",
            phase,
            extra={
                "event": LogEvent.RENAME_PHASE,
                "component": Component.RENAME,
                "container_id": job.container_id,
                "job_id": job.job_id,
                "phase": phase,
                "error": error,
            },
        )
