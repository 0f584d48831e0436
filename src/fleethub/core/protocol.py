"""Agent <-> orchestrator WebSocket protocol.

Every frame is a JSON object with a ``type`` discriminator.

Agent -> orchestrator: auth, heartbeat, metrics, service_state_changed,
config_ack, error.
Orchestrator -> agent: auth_result, config, power_policy_update,
service_command, shutdown.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from fleethub.core.domain import ServiceAction, ServiceComponent, ServiceState

# =============================================================================
# Agent -> Orchestrator
# =============================================================================


class AuthMessage(BaseModel):
    type: Literal["auth"] = "auth"
    token: str
    service_name: str  # container slug
    version: str
    ip_address: str | None = None


class HeartbeatMessage(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    uptime_secs: int = 0
    connections_active: int = 0


class AgentMetrics(BaseModel):
    """Last metrics snapshot of a container."""

    code_server_status: ServiceState = ServiceState.STOPPED
    app_status: ServiceState = ServiceState.STOPPED
    db_status: ServiceState = ServiceState.STOPPED
    memory_bytes: int = 0
    cpu_percent: float = 0.0
    code_server_idle_secs: int = 0
    app_idle_secs: int = 0

    def status_of(self, component: ServiceComponent) -> ServiceState:
        return getattr(self, f"{component.value}_status")

    def with_status(self, component: ServiceComponent, state: ServiceState) -> "AgentMetrics":
        """Copy with only the addressed component's status replaced."""
        return self.model_copy(update={f"{component.value}_status": state})


class MetricsMessage(AgentMetrics):
    type: Literal["metrics"] = "metrics"

    def snapshot(self) -> AgentMetrics:
        return AgentMetrics.model_validate(self.model_dump(exclude={"type"}))


class ServiceStateChangedMessage(BaseModel):
    type: Literal["service_state_changed"] = "service_state_changed"
    service_type: ServiceComponent
    new_state: ServiceState


class ConfigAckMessage(BaseModel):
    type: Literal["config_ack"] = "config_ack"
    config_version: int


class AgentErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


AgentMessage = Annotated[
    AuthMessage
    | HeartbeatMessage
    | MetricsMessage
    | ServiceStateChangedMessage
    | ConfigAckMessage
    | AgentErrorMessage,
    Field(discriminator="type"),
]

_agent_message_adapter: TypeAdapter[AgentMessage] = TypeAdapter(AgentMessage)


def parse_agent_message(raw: str | bytes) -> AgentMessage:
    """Parse one agent frame. Raises pydantic.ValidationError on bad input."""
    return _agent_message_adapter.validate_json(raw)


# =============================================================================
# Orchestrator -> Agent
# =============================================================================


class AuthResultMessage(BaseModel):
    type: Literal["auth_result"] = "auth_result"
    success: bool
    error: str | None = None


class ConfigMessage(BaseModel):
    """Full configuration push (after auth and on every record change)."""

    type: Literal["config"] = "config"
    config_version: int
    slug: str
    environment: str
    enabled: bool
    frontend: dict
    apis: list[dict] = Field(default_factory=list)
    code_server_enabled: bool = True
    idle_timeouts: dict[str, int] = Field(default_factory=dict)


class PowerPolicyUpdateMessage(BaseModel):
    type: Literal["power_policy_update"] = "power_policy_update"
    idle_timeouts: dict[str, int] = Field(default_factory=dict)


class ServiceCommandMessage(BaseModel):
    type: Literal["service_command"] = "service_command"
    service_type: ServiceComponent
    action: ServiceAction


class ShutdownMessage(BaseModel):
    type: Literal["shutdown"] = "shutdown"


RegistryMessage = (
    AuthResultMessage
    | ConfigMessage
    | PowerPolicyUpdateMessage
    | ServiceCommandMessage
    | ShutdownMessage
)
