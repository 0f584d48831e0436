"""Host model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from fleethub.core.domain import HostStatus
from fleethub.core.models.base import generate_ulid, utc_now


class Host(SQLModel, table=True):
    """A machine running a host agent.

    status/latency_ms/last_probe_at are owned by the HostProber.
    """

    __tablename__ = "hosts"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    name: str = Field(max_length=255, unique=True, index=True)
    address: str = Field(max_length=512)  # host agent base URL

    status: HostStatus = Field(default=HostStatus.UNKNOWN, sa_type=String)
    latency_ms: float | None = None
    last_probe_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
