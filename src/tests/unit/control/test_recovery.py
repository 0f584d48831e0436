"""Tests for startup recovery of interrupted jobs."""

from fleethub.control.recovery import interrupted_message, startup_recovery
from fleethub.core.domain import ContainerStatus
from fleethub.core.events import AgentStatusEvent


class TestStartupRecovery:
    async def test_interrupted_jobs_are_flagged(self, store, session_factory, events) -> None:
        host = store.add_host("h1")
        migrating = store.add_container(
            "blog", host, ContainerStatus.CONNECTED, active_job="migration", active_job_id="t-1"
        )
        renaming = store.add_container(
            "shop", host, ContainerStatus.PENDING, active_job="rename", active_job_id="r-1"
        )
        idle = store.add_container("wiki", host, ContainerStatus.CONNECTED)

        count = await startup_recovery(session_factory, events)

        assert count == 2
        assert migrating.status == ContainerStatus.ERROR
        assert migrating.status_message == (
            "Orchestrator restarted during migration t-1; manual recovery required"
        )
        assert migrating.active_job is None
        assert migrating.active_job_id is None
        assert renaming.status == ContainerStatus.ERROR
        assert idle.status == ContainerStatus.CONNECTED
        assert {e.app_id for e in events.of_type(AgentStatusEvent)} == {migrating.id, renaming.id}

    async def test_nothing_to_recover(self, store, session_factory) -> None:
        store.add_container("blog", store.add_host("h1"))

        assert await startup_recovery(session_factory) == 0

    def test_message(self) -> None:
        assert interrupted_message("rename", "r-9") == (
            "Orchestrator restarted during rename r-9; manual recovery required"
        )
