"""Tests for MigrationEngine."""

import asyncio

import pytest

from fleethub.control.lifecycle import ContainerLifecycle
from fleethub.control.migration import MigrationEngine
from fleethub.control.rename import RenameEngine
from fleethub.core.domain import (
    MIGRATION_PHASES,
    ArtifactKind,
    ContainerStatus,
    HostStatus,
    JobPhase,
)
from fleethub.core.errors import (
    ContainerBusyError,
    HostUnreachableError,
    InvalidMigrationError,
    JobNotFoundError,
    NoActiveJobError,
)
from fleethub.core.events import MigrationProgressEvent
from fleethub.services import container_service


@pytest.fixture
def engine(session_factory, runtime_factory, registry, events, jobs, locks, tasks) -> MigrationEngine:
    return MigrationEngine(
        session_factory,
        runtime_factory,
        registry,
        events,
        jobs,
        locks,
        tasks,
        verify_timeout=1.0,
        progress_interval=0.0,
        max_retries=0,
        retry_base_delay=0.01,
    )


@pytest.fixture
def fleet(store, runtime_factory, connect_agent):
    """Container running on h1 with an online destination h2.

    Starting the container on h2 makes its agent reconnect.
    """
    source_host = store.add_host("h1")
    destination_host = store.add_host("h2")
    container = store.add_container("blog", source_host, ContainerStatus.CONNECTED)

    source = runtime_factory(source_host)
    destination = runtime_factory(destination_host)
    source.containers["hr-blog"] = "running"

    async def reconnect(container_name: str) -> None:
        await connect_agent(container.id)

    destination.on_start = reconnect
    return container, source_host, destination_host, source, destination


def _progress(events) -> list[MigrationProgressEvent]:
    return events.of_type(MigrationProgressEvent)


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)


class TestValidation:
    async def test_same_host(self, engine, fleet) -> None:
        container, source_host, *_ = fleet

        with pytest.raises(InvalidMigrationError):
            await engine.migrate(container.id, source_host.id)

        assert container.active_job is None

    async def test_destination_offline(self, engine, store, fleet) -> None:
        container, _, destination_host, *_ = fleet
        destination_host.status = HostStatus.OFFLINE

        with pytest.raises(HostUnreachableError):
            await engine.migrate(container.id, destination_host.id)

        assert container.active_job is None

    async def test_status_without_job(self, engine) -> None:
        with pytest.raises(JobNotFoundError):
            engine.status("c1")

    async def test_cancel_without_job(self, engine) -> None:
        with pytest.raises(NoActiveJobError):
            engine.cancel("c1")


class TestHappyPath:
    async def test_moves_container(self, engine, fleet, tasks, events) -> None:
        container, source_host, destination_host, source, destination = fleet

        job = await engine.migrate(container.id, destination_host.id)
        assert container.active_job == "migration"
        assert container.active_job_id == job.transfer_id
        await tasks.wait_idle()

        assert job.phase == JobPhase.COMPLETE
        assert job.progress_pct == 100
        assert job.bytes_transferred == job.total_bytes == 28
        assert container.host_id == destination_host.id
        assert container.active_job is None

        # Artifacts went through unchanged and were cleaned up afterwards
        assert ("upload_artifact", job.transfer_id, ArtifactKind.ROOTFS) in destination.calls
        assert destination.containers == {"hr-blog": "running"}
        assert "hr-blog" not in source.containers
        assert source.called("discard_transfer") and destination.called("discard_transfer")

    async def test_phases_are_published_in_order(self, engine, fleet, tasks, events) -> None:
        container, _, destination_host, *_ = fleet

        await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        phases: list[JobPhase] = []
        for event in _progress(events):
            if not phases or phases[-1] != event.phase:
                phases.append(event.phase)
        assert tuple(phases) == MIGRATION_PHASES

    async def test_progress_never_decreases(self, engine, fleet, tasks, events) -> None:
        container, _, destination_host, *_ = fleet

        await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        progress = _progress(events)
        transferred = [e.bytes_transferred for e in progress]
        pct = [e.progress_pct for e in progress]
        assert transferred == sorted(transferred)
        assert pct == sorted(pct)
        # Streaming updates were published while bytes moved
        assert len({e.bytes_transferred for e in progress}) > 2

    async def test_status_after_completion(self, engine, fleet, tasks) -> None:
        container, _, destination_host, *_ = fleet

        job = await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        assert engine.status(container.id) is job
        with pytest.raises(NoActiveJobError):
            engine.cancel(container.id)


class TestConcurrency:
    async def test_second_job_rejected(
        self, engine, fleet, tasks, session_factory, runtime_factory, registry, events, jobs, locks
    ) -> None:
        container, _, destination_host, source, _ = fleet
        source.stream_gate = asyncio.Event()

        job = await engine.migrate(container.id, destination_host.id)
        await _wait_for(lambda: job.bytes_transferred > 0)

        with pytest.raises(ContainerBusyError, match="Migration already in progress"):
            await engine.migrate(container.id, destination_host.id)

        rename = RenameEngine(session_factory, runtime_factory, registry, events, jobs, locks, tasks)
        with pytest.raises(ContainerBusyError, match="Migration already in progress"):
            await rename.rename(container.id, "journal")

        source.stream_gate.set()
        await tasks.wait_idle()
        assert job.phase == JobPhase.COMPLETE

    async def test_start_in_flight_completes_before_migration_claims(
        self,
        engine,
        fleet,
        store,
        tasks,
        session_factory,
        runtime_factory,
        registry,
        events,
        jobs,
        locks,
        monkeypatch,
    ) -> None:
        container, _, destination_host, source, _ = fleet
        lifecycle = ContainerLifecycle(
            session_factory, runtime_factory, registry, events, jobs, locks, tasks, max_retries=0
        )

        async def slow_set_status(*args, **kwargs):
            await asyncio.sleep(0.05)
            return await store.set_status(*args, **kwargs)

        monkeypatch.setattr(container_service, "set_status", slow_set_status)

        start = asyncio.create_task(lifecycle.start(container.id))
        await asyncio.sleep(0)  # start now holds the container lock
        job = await engine.migrate(container.id, destination_host.id)
        await start
        await tasks.wait_idle()

        assert job.phase == JobPhase.COMPLETE
        methods = [call[0] for call in source.calls]
        assert methods.count("start_container") == 1
        assert methods.index("start_container") < methods.index("stop_container")
        assert "hr-blog" not in source.containers


class TestCancel:
    async def test_cancel_during_transfer_restores_source(
        self, engine, fleet, tasks, events, registry, connect_agent
    ) -> None:
        container, source_host, destination_host, source, destination = fleet
        source.stream_gate = asyncio.Event()

        async def reconnect(container_name: str) -> None:
            await connect_agent(container.id)

        source.on_start = reconnect

        job = await engine.migrate(container.id, destination_host.id)
        await _wait_for(lambda: job.phase == JobPhase.TRANSFERRING and job.bytes_transferred > 0)

        assert engine.cancel(container.id) is job
        source.stream_gate.set()
        await tasks.wait_idle()

        assert job.phase == JobPhase.CANCELLED
        assert job.error is None
        assert container.host_id == source_host.id
        assert container.active_job is None
        assert source.containers["hr-blog"] == "running"
        assert "hr-blog" not in destination.containers
        assert destination.uploads == {}
        assert container.status == ContainerStatus.CONNECTED
        assert registry.is_connected(container.id)
        assert _progress(events)[-1].phase == JobPhase.CANCELLED

    async def test_cancel_while_verifying_is_prompt(
        self, session_factory, runtime_factory, registry, events, jobs, locks, tasks, fleet
    ) -> None:
        container, source_host, destination_host, source, destination = fleet
        destination.on_start = None
        engine = MigrationEngine(
            session_factory,
            runtime_factory,
            registry,
            events,
            jobs,
            locks,
            tasks,
            verify_timeout=30.0,
            max_retries=0,
        )

        job = await engine.migrate(container.id, destination_host.id)
        await _wait_for(lambda: job.phase == JobPhase.VERIFYING)

        engine.cancel(container.id)
        async with asyncio.timeout(1.0):
            await tasks.wait_idle()

        assert job.phase == JobPhase.CANCELLED
        assert container.host_id == source_host.id
        assert source.containers["hr-blog"] == "running"
        assert "hr-blog" not in destination.containers

    async def test_cancel_before_stop_completes(self, engine, fleet, tasks) -> None:
        container, source_host, destination_host, source, _ = fleet

        job = await engine.migrate(container.id, destination_host.id)
        engine.cancel(container.id)
        await tasks.wait_idle()

        assert job.phase == JobPhase.CANCELLED
        assert container.host_id == source_host.id
        assert source.containers["hr-blog"] == "running"


class TestFailure:
    async def test_import_failure_rolls_back(self, engine, fleet, tasks) -> None:
        container, source_host, destination_host, source, destination = fleet
        destination.fail["import_artifact"] = RuntimeError("corrupt archive")

        job = await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        assert job.phase == JobPhase.FAILED
        assert job.error == "corrupt archive"
        assert container.host_id == source_host.id
        assert container.active_job is None
        assert source.containers["hr-blog"] == "running"
        assert destination.called("delete_container")

    async def test_export_failure_never_touches_destination(self, engine, fleet, tasks) -> None:
        container, _, destination_host, source, destination = fleet
        source.fail["export_container"] = RuntimeError("disk error")

        job = await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        assert job.phase == JobPhase.FAILED
        assert destination.calls == []
        assert source.containers["hr-blog"] == "running"

    async def test_agent_never_reconnects(
        self, session_factory, runtime_factory, registry, events, jobs, locks, tasks, fleet
    ) -> None:
        container, source_host, destination_host, source, destination = fleet
        destination.on_start = None
        engine = MigrationEngine(
            session_factory,
            runtime_factory,
            registry,
            events,
            jobs,
            locks,
            tasks,
            verify_timeout=0.05,
            max_retries=0,
        )

        job = await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        assert job.phase == JobPhase.FAILED
        assert "did not reconnect" in job.error
        assert container.host_id == source_host.id
        assert "hr-blog" not in destination.containers
        assert source.containers["hr-blog"] == "running"

    async def test_failed_progress_keeps_last_pct(self, engine, fleet, tasks, events) -> None:
        container, _, destination_host, _, destination = fleet
        destination.fail["start_container"] = RuntimeError("boom")

        job = await engine.migrate(container.id, destination_host.id)
        await tasks.wait_idle()

        last = _progress(events)[-1]
        assert last.phase == JobPhase.FAILED
        assert last.progress_pct == job.progress_pct == 90
        assert last.error == "boom"
