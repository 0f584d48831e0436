"""Tests for fan-out event envelopes."""

import json

from fleethub.core.domain import (
    CommandOutcome,
    ContainerStatus,
    HostStatus,
    JobPhase,
    ServiceComponent,
)
from fleethub.core.events import (
    AgentStatusEvent,
    HostStatusEvent,
    MigrationProgressEvent,
    ServiceCommandEvent,
)


class TestEnvelopes:
    def test_agent_status_envelope_is_camel_case(self) -> None:
        event = AgentStatusEvent(app_id="c1", slug="blog", status=ContainerStatus.CONNECTED)
        assert event.to_envelope() == {
            "type": "agent:status",
            "data": {
                "appId": "c1",
                "slug": "blog",
                "status": "connected",
                "message": None,
                "refresh": False,
            },
        }

    def test_migration_progress(self) -> None:
        event = MigrationProgressEvent(
            app_id="c1",
            transfer_id="t1",
            phase=JobPhase.TRANSFERRING,
            progress_pct=42,
            bytes_transferred=10,
            total_bytes=100,
        )
        payload = json.loads(event.to_json())
        assert payload["type"] == "migration:progress"
        assert payload["data"]["transferId"] == "t1"
        assert payload["data"]["progressPct"] == 42
        assert payload["data"]["etaSecs"] is None

    def test_service_command(self) -> None:
        event = ServiceCommandEvent(
            app_id="c1",
            service_type=ServiceComponent.CODE_SERVER,
            action=CommandOutcome.STARTING,
            success=True,
        )
        data = event.to_envelope()["data"]
        assert event.EVENT_TYPE == "agent:service-command"
        assert data["serviceType"] == "code_server"
        assert data["action"] == "starting"

    def test_ordering_keys(self) -> None:
        assert AgentStatusEvent(app_id="c1", slug="s", status=ContainerStatus.PENDING).key == "c1"
        assert HostStatusEvent(host_id="h1", status=HostStatus.ONLINE).key == "h1"
