"""Container API endpoints: CRUD, lifecycle, services, migration, rename."""

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, NonNegativeInt
from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.control.migration import MIGRATION_NOTICE
from fleethub.control.orchestrator import Orchestrator, get_orchestrator
from fleethub.core.domain import (
    ContainerStatus,
    Environment,
    JobKind,
    JobPhase,
    ServiceComponent,
    StackStatus,
)
from fleethub.core.models import ApiEndpoint, Container, FrontendEndpoint
from fleethub.core.protocol import AgentMetrics
from fleethub.infra import get_session
from fleethub.services import container_service

router = APIRouter(prefix="/containers", tags=["containers"])

DbSession = Annotated[AsyncSession, Depends(get_session)]
Orch = Annotated[Orchestrator, Depends(get_orchestrator)]


# =============================================================================
# Request/Response Models
# =============================================================================


class CreateContainerRequest(BaseModel):
    """Create container request.

    slug is checked by the service so a bad slug yields INVALID_SLUG.
    """

    name: str = Field(min_length=1, max_length=255)
    slug: str
    host_id: str
    environment: Environment = Environment.DEVELOPMENT
    frontend: FrontendEndpoint
    apis: list[ApiEndpoint] = Field(default_factory=list)
    code_server_enabled: bool = True
    idle_timeouts: dict[str, NonNegativeInt] = Field(default_factory=dict)
    linked_container_id: str | None = None


class UpdateContainerRequest(BaseModel):
    """Update container request. Only fields that are set are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    environment: Environment | None = None
    frontend: FrontendEndpoint | None = None
    apis: list[ApiEndpoint] | None = None
    code_server_enabled: bool | None = None
    idle_timeouts: dict[str, NonNegativeInt] | None = None
    linked_container_id: str | None = None


class SetEnabledRequest(BaseModel):
    enabled: bool


class MigrateRequest(BaseModel):
    destination_host_id: str


class RenameRequest(BaseModel):
    new_slug: str
    new_name: str | None = None


class ContainerResponse(BaseModel):
    """Container response (the agent token hash is never exposed)."""

    id: str
    name: str
    slug: str
    environment: Environment
    host_id: str
    container_name: str
    frontend: dict
    apis: list[dict]
    code_server_enabled: bool
    idle_timeouts: dict[str, int]
    enabled: bool
    linked_container_id: str | None
    status: ContainerStatus
    status_message: str | None
    status_changed_at: datetime
    agent_version: str | None
    ip_address: str | None
    active_job: JobKind | None
    active_job_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ContainerDetailResponse(ContainerResponse):
    """Container with live session data."""

    connected: bool = False
    metrics: AgentMetrics | None = None
    stack_status: StackStatus | None = None


class CreateContainerResponse(BaseModel):
    container: ContainerResponse
    # Shown once; only its hash is stored
    agent_token: str


class ContainerListResponse(BaseModel):
    items: list[ContainerResponse]
    total: int


class CommandAcceptedResponse(BaseModel):
    container_id: str
    component: ServiceComponent | None = None
    action: Literal["start", "stop"]
    accepted: bool = True


class MigrationJobResponse(BaseModel):
    container_id: str
    transfer_id: str
    source_host_id: str
    destination_host_id: str
    phase: JobPhase
    progress_pct: int
    bytes_transferred: int
    total_bytes: int
    bytes_per_sec: float | None
    eta_secs: int | None
    error: str | None
    cancel_requested: bool
    started_at: datetime
    finished_at: datetime | None

    model_config = {"from_attributes": True}


class MigrateResponse(BaseModel):
    job: MigrationJobResponse
    notice: str


class RenameJobResponse(BaseModel):
    container_id: str
    job_id: str
    old_slug: str
    new_slug: str
    old_name: str
    new_name: str
    phase: JobPhase
    error: str | None
    started_at: datetime
    finished_at: datetime | None

    model_config = {"from_attributes": True}


# =============================================================================
# Helper
# =============================================================================


def _to_response(container: Container) -> ContainerResponse:
    return ContainerResponse.model_validate(container)


def _to_detail(container: Container, orch: Orchestrator) -> ContainerDetailResponse:
    detail = ContainerDetailResponse.model_validate(container)
    detail.connected = orch.registry.is_connected(container.id)
    detail.metrics = orch.registry.metrics_for(container.id)
    detail.stack_status = orch.services.stack_status(container.id)
    return detail


# =============================================================================
# CRUD
# =============================================================================


@router.post("", response_model=CreateContainerResponse, status_code=201)
async def create_container(request: CreateContainerRequest, orch: Orch) -> CreateContainerResponse:
    """Create a container and deploy it on its host in the background."""
    container, token = await orch.lifecycle.create(
        name=request.name,
        slug=request.slug,
        host_id=request.host_id,
        environment=request.environment,
        frontend=request.frontend,
        apis=request.apis,
        code_server_enabled=request.code_server_enabled,
        idle_timeouts=request.idle_timeouts,
        linked_container_id=request.linked_container_id,
    )
    return CreateContainerResponse(container=_to_response(container), agent_token=token)


@router.get("", response_model=ContainerListResponse)
async def list_containers(
    db: DbSession,
    host_id: str | None = Query(default=None),
) -> ContainerListResponse:
    containers = await container_service.list_containers(db, host_id=host_id)
    return ContainerListResponse(
        items=[_to_response(c) for c in containers],
        total=len(containers),
    )


@router.get("/{container_id}", response_model=ContainerDetailResponse)
async def get_container(container_id: str, db: DbSession, orch: Orch) -> ContainerDetailResponse:
    """Get container with live metrics and stack status."""
    container = await container_service.get_container(db, container_id)
    return _to_detail(container, orch)


@router.patch("/{container_id}", response_model=ContainerResponse)
async def update_container(
    container_id: str,
    request: UpdateContainerRequest,
    orch: Orch,
) -> ContainerResponse:
    container = await orch.lifecycle.update(container_id, request.model_dump(exclude_unset=True))
    return _to_response(container)


@router.delete("/{container_id}", status_code=204)
async def delete_container(container_id: str, orch: Orch) -> Response:
    await orch.lifecycle.delete(container_id)
    return Response(status_code=204)


@router.put("/{container_id}/enabled", response_model=ContainerResponse)
async def set_enabled(container_id: str, request: SetEnabledRequest, orch: Orch) -> ContainerResponse:
    container = await orch.lifecycle.set_enabled(container_id, request.enabled)
    return _to_response(container)


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("/{container_id}/redeploy", response_model=ContainerResponse, status_code=202)
async def redeploy_container(container_id: str, orch: Orch) -> ContainerResponse:
    """Retry a failed deploy (container must be in error)."""
    container = await orch.lifecycle.redeploy(container_id)
    return _to_response(container)


@router.post("/{container_id}/start", response_model=ContainerResponse)
async def start_container(container_id: str, orch: Orch) -> ContainerResponse:
    container = await orch.lifecycle.start(container_id)
    return _to_response(container)


@router.post("/{container_id}/stop", response_model=ContainerResponse)
async def stop_container(container_id: str, orch: Orch) -> ContainerResponse:
    container = await orch.lifecycle.stop(container_id)
    return _to_response(container)


# =============================================================================
# Service components
# =============================================================================


@router.post(
    "/{container_id}/services/{component}/{action}",
    response_model=CommandAcceptedResponse,
    status_code=202,
)
async def service_command(
    container_id: str,
    component: str,
    action: Literal["start", "stop"],
    db: DbSession,
    orch: Orch,
) -> CommandAcceptedResponse:
    """Dispatch start/stop for one component.

    The result arrives later as an agent:service-command event.
    """
    await container_service.get_container(db, container_id)
    if action == "start":
        orch.services.start(container_id, component)
    else:
        orch.services.stop(container_id, component)
    return CommandAcceptedResponse(
        container_id=container_id, component=ServiceComponent(component), action=action
    )


@router.post(
    "/{container_id}/stack/{action}",
    response_model=CommandAcceptedResponse,
    status_code=202,
)
async def stack_command(
    container_id: str,
    action: Literal["start", "stop"],
    db: DbSession,
    orch: Orch,
) -> CommandAcceptedResponse:
    """Start (db then app) or stop (app then db) the stack in the background."""
    await container_service.get_container(db, container_id)
    if action == "start":
        orch.services.start_stack(container_id)
    else:
        orch.services.stop_stack(container_id)
    return CommandAcceptedResponse(container_id=container_id, action=action)


# =============================================================================
# Migration
# =============================================================================


@router.post("/{container_id}/migrate", response_model=MigrateResponse, status_code=202)
async def migrate_container(container_id: str, request: MigrateRequest, orch: Orch) -> MigrateResponse:
    job = await orch.migration.migrate(container_id, request.destination_host_id)
    return MigrateResponse(job=MigrationJobResponse.model_validate(job), notice=MIGRATION_NOTICE)


@router.post("/{container_id}/migrate/cancel", response_model=MigrationJobResponse, status_code=202)
async def cancel_migration(container_id: str, orch: Orch) -> MigrationJobResponse:
    job = orch.migration.cancel(container_id)
    return MigrationJobResponse.model_validate(job)


@router.get("/{container_id}/migrate/status", response_model=MigrationJobResponse)
async def migration_status(container_id: str, orch: Orch) -> MigrationJobResponse:
    job = orch.migration.status(container_id)
    return MigrationJobResponse.model_validate(job)


# =============================================================================
# Rename
# =============================================================================


@router.post("/{container_id}/rename", response_model=RenameJobResponse, status_code=202)
async def rename_container(container_id: str, request: RenameRequest, orch: Orch) -> RenameJobResponse:
    """Start a rename; poll /rename/status until complete or failed."""
    job = await orch.rename.rename(container_id, request.new_slug, request.new_name)
    return RenameJobResponse.model_validate(job)


@router.get("/{container_id}/rename/status", response_model=RenameJobResponse)
async def rename_status(container_id: str, orch: Orch) -> RenameJobResponse:
    job = orch.rename.status(container_id)
    return RenameJobResponse.model_validate(job)
