"""Events pushed to observers over the fan-out channel.

Wire format (one JSON object per event):
    {"type": "migration:progress", "data": {"appId": "...", "phase": "...", ...}}

Field names are camelCase on the wire; Python code uses snake_case.
"""

import json
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from fleethub.core.domain import (
    CommandOutcome,
    ContainerStatus,
    HostStatus,
    JobPhase,
    ServiceComponent,
    ServiceState,
)


class FleetEvent(BaseModel):
    """Base class for fan-out events."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    EVENT_TYPE: ClassVar[str]

    @property
    def key(self) -> str:
        """Ordering key (events with the same key keep their order)."""
        raise NotImplementedError

    def to_envelope(self) -> dict[str, Any]:
        return {"type": self.EVENT_TYPE, "data": self.model_dump(mode="json", by_alias=True)}

    def to_json(self) -> str:
        return json.dumps(self.to_envelope())


class _ContainerEvent(FleetEvent):
    app_id: str

    @property
    def key(self) -> str:
        return self.app_id


class AgentStatusEvent(_ContainerEvent):
    EVENT_TYPE: ClassVar[str] = "agent:status"

    slug: str
    status: ContainerStatus
    message: str | None = None
    # Set when the agent connected for the first time after a deploy
    refresh: bool = False


class AgentMetricsEvent(_ContainerEvent):
    EVENT_TYPE: ClassVar[str] = "agent:metrics"

    code_server_status: ServiceState
    app_status: ServiceState
    db_status: ServiceState
    memory_bytes: int
    cpu_percent: float
    code_server_idle_secs: int
    app_idle_secs: int


class ServiceCommandEvent(_ContainerEvent):
    EVENT_TYPE: ClassVar[str] = "agent:service-command"

    service_type: ServiceComponent
    action: CommandOutcome
    success: bool


class HostStatusEvent(FleetEvent):
    EVENT_TYPE: ClassVar[str] = "hosts:status"

    host_id: str
    status: HostStatus
    latency_ms: float | None = None

    @property
    def key(self) -> str:
        return self.host_id


class MigrationProgressEvent(_ContainerEvent):
    EVENT_TYPE: ClassVar[str] = "migration:progress"

    transfer_id: str
    phase: JobPhase
    progress_pct: int
    bytes_transferred: int
    total_bytes: int
    bytes_per_sec: float | None = None
    eta_secs: int | None = None
    error: str | None = None


class RenameProgressEvent(_ContainerEvent):
    EVENT_TYPE: ClassVar[str] = "rename:progress"

    job_id: str
    phase: JobPhase
    new_slug: str
    error: str | None = None
