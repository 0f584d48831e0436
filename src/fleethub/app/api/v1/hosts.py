"""Host API endpoints (fleet registry)."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.app.api.v1.containers import ContainerListResponse, ContainerResponse
from fleethub.control.orchestrator import Orchestrator, get_orchestrator
from fleethub.core.domain import HostStatus
from fleethub.infra import get_session
from fleethub.services import container_service, host_service

router = APIRouter(prefix="/hosts", tags=["hosts"])

DbSession = Annotated[AsyncSession, Depends(get_session)]
Orch = Annotated[Orchestrator, Depends(get_orchestrator)]


class CreateHostRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1, max_length=512, pattern=r"^https?://")


class UpdateHostRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, min_length=1, max_length=512, pattern=r"^https?://")


class HostResponse(BaseModel):
    id: str
    name: str
    address: str
    status: HostStatus
    latency_ms: float | None
    last_probe_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class HostListResponse(BaseModel):
    items: list[HostResponse]
    total: int


@router.post("", response_model=HostResponse, status_code=201)
async def create_host(request: CreateHostRequest, db: DbSession, orch: Orch) -> HostResponse:
    """Register a host; it is probed right away."""
    host = await host_service.create_host(db, request.name, request.address)
    orch.prober.wake()
    return HostResponse.model_validate(host)


@router.get("", response_model=HostListResponse)
async def list_hosts(db: DbSession) -> HostListResponse:
    hosts = await host_service.list_hosts(db)
    return HostListResponse(items=[HostResponse.model_validate(h) for h in hosts], total=len(hosts))


@router.get("/{host_id}", response_model=HostResponse)
async def get_host(host_id: str, db: DbSession) -> HostResponse:
    host = await host_service.get_host(db, host_id)
    return HostResponse.model_validate(host)


@router.patch("/{host_id}", response_model=HostResponse)
async def update_host(
    host_id: str, request: UpdateHostRequest, db: DbSession, orch: Orch
) -> HostResponse:
    host = await host_service.update_host(db, host_id, name=request.name, address=request.address)
    if request.address is not None:
        orch.prober.wake()
    return HostResponse.model_validate(host)


@router.delete("/{host_id}", status_code=204)
async def delete_host(host_id: str, db: DbSession, orch: Orch) -> Response:
    """Remove a host. Rejected with HOST_IN_USE while it owns containers."""
    await host_service.delete_host(db, host_id)
    await orch.forget_host(host_id)
    return Response(status_code=204)


@router.get("/{host_id}/containers", response_model=ContainerListResponse)
async def list_host_containers(host_id: str, db: DbSession) -> ContainerListResponse:
    await host_service.get_host(db, host_id)
    containers = await container_service.list_containers(db, host_id=host_id)
    return ContainerListResponse(
        items=[ContainerResponse.model_validate(c) for c in containers],
        total=len(containers),
    )
