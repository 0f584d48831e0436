"""Host service for the fleet registry."""

from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.core.domain import HostStatus
from fleethub.core.errors import HostInUseError, HostNotFoundError, ValidationFailedError
from fleethub.core.models import Container, Host


async def create_host(db: AsyncSession, name: str, address: str) -> Host:
    """Register a host. Reachability starts as unknown until the first probe."""
    now = datetime.now(UTC)
    host = Host(
        name=name,
        address=address.rstrip("/"),
        status=HostStatus.UNKNOWN,
        created_at=now,
        updated_at=now,
    )
    db.add(host)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ValidationFailedError("Host name already in use") from e
    await db.refresh(host)
    return host


async def get_host(db: AsyncSession, host_id: str) -> Host:
    """Get host by ID.

    Raises:
        HostNotFoundError: If host not found
    """
    host = await db.get(Host, host_id)
    if host is None:
        raise HostNotFoundError()
    return host


async def list_hosts(db: AsyncSession) -> list[Host]:
    result = await db.execute(select(Host).order_by(Host.name))
    return list(result.scalars().all())


async def update_host(
    db: AsyncSession,
    host_id: str,
    name: str | None = None,
    address: str | None = None,
) -> Host:
    host = await get_host(db, host_id)
    if name is not None:
        host.name = name
    if address is not None and address.rstrip("/") != host.address:
        host.address = address.rstrip("/")
    host.updated_at = datetime.now(UTC)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ValidationFailedError("Host name already in use") from e
    await db.refresh(host)
    return host


async def count_containers(db: AsyncSession, host_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Container).where(Container.host_id == host_id)
    )
    return result.scalar_one()


async def delete_host(db: AsyncSession, host_id: str) -> None:
    """Remove a host.

    Raises:
        HostInUseError: If the host still owns containers
    """
    host = await get_host(db, host_id)
    if await count_containers(db, host_id) > 0:
        raise HostInUseError()
    await db.delete(host)
    await db.commit()


async def set_reachability(
    db: AsyncSession,
    host_id: str,
    status: HostStatus,
    latency_ms: float | None,
) -> bool:
    """Record a probe result. Only the prober calls this.

    Returns:
        True if status or latency changed.
    """
    host = await db.get(Host, host_id)
    if host is None:
        # Deleted while being probed
        return False

    changed = host.status != status or host.latency_ms != latency_ms
    now = datetime.now(UTC)
    host.last_probe_at = now
    if changed:
        host.status = status
        host.latency_ms = latency_ms
        host.updated_at = now
    await db.commit()
    return changed
