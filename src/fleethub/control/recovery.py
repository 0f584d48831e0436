"""Startup recovery for jobs interrupted by an orchestrator restart.

Jobs live in memory only, so a restart in the middle of a migration or
rename loses the job. The container keeps the active_job marker written
when the job started; every such container is put in error for manual
recovery. Called during startup before accepting API requests.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.core.domain import ContainerStatus
from fleethub.core.events import AgentStatusEvent
from fleethub.core.logging_schema import LogEvent
from fleethub.infra.event_bus import EventBus
from fleethub.services import container_service

logger = logging.getLogger(__name__)


def interrupted_message(kind: str, job_id: str | None) -> str:
    return f"Orchestrator restarted during {kind} {job_id}; manual recovery required"


async def startup_recovery(
    session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
    events: EventBus | None = None,
) -> int:
    """Flag containers whose migration/rename was interrupted.

    Returns:
        Number of containers put in error.
    """
    async with session_factory() as db:
        interrupted = await container_service.list_with_active_job(db)

        for container in interrupted:
            message = interrupted_message(container.active_job, container.active_job_id)
            logger.error(
                "Interrupted %s detected for container %s",
                container.active_job,
                container.id,
                extra={
                    "event": LogEvent.RECOVERY,
                    "container_id": container.id,
                    "job_id": container.active_job_id,
                    "job_kind": container.active_job,
                },
            )
            await container_service.set_status(db, container.id, ContainerStatus.ERROR, message)
            await container_service.set_active_job(db, container.id, None)

            if events is not None:
                events.emit(
                    AgentStatusEvent(
                        app_id=container.id,
                        slug=container.slug,
                        status=ContainerStatus.ERROR,
                        message=message,
                    )
                )

    if interrupted:
        logger.info("Startup recovery flagged %d containers", len(interrupted))
    return len(interrupted)
