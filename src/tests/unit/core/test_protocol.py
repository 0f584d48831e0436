"""Tests for the agent WebSocket protocol models."""

import json

import pytest
from pydantic import ValidationError

from fleethub.core.domain import ServiceAction, ServiceComponent, ServiceState
from fleethub.core.protocol import (
    AgentMetrics,
    AuthMessage,
    ConfigAckMessage,
    HeartbeatMessage,
    MetricsMessage,
    ServiceCommandMessage,
    ServiceStateChangedMessage,
    parse_agent_message,
)


class TestParseAgentMessage:
    def test_auth(self) -> None:
        msg = parse_agent_message(
            json.dumps(
                {"type": "auth", "token": "t", "service_name": "blog", "version": "1.2.0"}
            )
        )
        assert isinstance(msg, AuthMessage)
        assert msg.service_name == "blog"
        assert msg.ip_address is None

    def test_heartbeat_defaults(self) -> None:
        msg = parse_agent_message('{"type": "heartbeat"}')
        assert isinstance(msg, HeartbeatMessage)
        assert msg.uptime_secs == 0

    def test_metrics(self) -> None:
        msg = parse_agent_message(
            json.dumps({"type": "metrics", "app_status": "running", "memory_bytes": 1024})
        )
        assert isinstance(msg, MetricsMessage)
        snapshot = msg.snapshot()
        assert type(snapshot) is AgentMetrics
        assert snapshot.app_status == ServiceState.RUNNING
        assert snapshot.db_status == ServiceState.STOPPED

    def test_service_state_changed(self) -> None:
        msg = parse_agent_message(
            b'{"type": "service_state_changed", "service_type": "db", "new_state": "starting"}'
        )
        assert isinstance(msg, ServiceStateChangedMessage)
        assert msg.service_type == ServiceComponent.DB

    def test_config_ack(self) -> None:
        msg = parse_agent_message('{"type": "config_ack", "config_version": 17}')
        assert isinstance(msg, ConfigAckMessage)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"type": "unknown"}',
            '{"type": "auth"}',
            '{"type": "service_state_changed", "service_type": "cache", "new_state": "running"}',
        ],
    )
    def test_rejects_bad_frames(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            parse_agent_message(raw)


class TestAgentMetrics:
    def test_with_status_replaces_only_one_component(self) -> None:
        metrics = AgentMetrics(app_status=ServiceState.RUNNING, memory_bytes=42)
        updated = metrics.with_status(ServiceComponent.DB, ServiceState.STARTING)

        assert updated.db_status == ServiceState.STARTING
        assert updated.app_status == ServiceState.RUNNING
        assert updated.memory_bytes == 42
        assert metrics.db_status == ServiceState.STOPPED

    def test_status_of(self) -> None:
        metrics = AgentMetrics(code_server_status=ServiceState.MANUALLY_OFF)
        assert metrics.status_of(ServiceComponent.CODE_SERVER) == ServiceState.MANUALLY_OFF


class TestOutgoingMessages:
    def test_service_command_wire_format(self) -> None:
        msg = ServiceCommandMessage(service_type=ServiceComponent.APP, action=ServiceAction.STOP)
        assert json.loads(msg.model_dump_json()) == {
            "type": "service_command",
            "service_type": "app",
            "action": "stop",
        }
