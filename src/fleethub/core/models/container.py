"""Container model and its endpoint declarations."""

from datetime import datetime

from pydantic import BaseModel
from pydantic import Field as PydanticField
from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from fleethub.core.domain import ContainerStatus, Environment
from fleethub.core.models.base import generate_ulid, utc_now


class FrontendEndpoint(BaseModel):
    """Declared frontend endpoint of a container."""

    target_port: int = PydanticField(ge=1, le=65535)
    auth_required: bool = False
    allowed_groups: list[str] = PydanticField(default_factory=list)
    local_only: bool = False


class ApiEndpoint(FrontendEndpoint):
    """Declared API endpoint (served under its own slug)."""

    slug: str = PydanticField(pattern=r"^[a-z0-9-]{1,32}$")


class Container(SQLModel, table=True):
    """Application instance owned by exactly one host.

    host_id is only written by the migration engine at phase complete.
    active_job/active_job_id mark an in-flight migration or rename so a
    restart can detect interrupted jobs.
    """

    __tablename__ = "containers"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    name: str = Field(max_length=255)
    slug: str = Field(max_length=32, unique=True, index=True)
    environment: Environment = Field(default=Environment.DEVELOPMENT, sa_type=String)
    host_id: str = Field(foreign_key="hosts.id", index=True)
    container_name: str = Field(max_length=255)

    frontend: dict = Field(sa_column=Column(JSONB, nullable=False))
    apis: list = Field(
        default_factory=list,
        sa_column=Column(JSONB, nullable=False, server_default="[]"),
    )
    code_server_enabled: bool = Field(default=True)
    # component -> idle seconds before auto-stop (0/missing disables)
    idle_timeouts: dict = Field(
        default_factory=dict,
        sa_column=Column(JSONB, nullable=False, server_default="{}"),
    )
    enabled: bool = Field(default=True)
    linked_container_id: str | None = Field(default=None, foreign_key="containers.id")

    status: ContainerStatus = Field(default=ContainerStatus.DEPLOYING, sa_type=String)
    status_message: str | None = Field(default=None, sa_column=Column(Text))
    status_changed_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    token_hash: str
    agent_version: str | None = None
    ip_address: str | None = None

    active_job: str | None = None  # JobKind value
    active_job_id: str | None = None

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    __table_args__ = (
        # Startup recovery scan
        Index(
            "idx_containers_active_job",
            "active_job",
            postgresql_where="active_job IS NOT NULL",
        ),
    )
