"""Container service for CRUD and status bookkeeping."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleethub.app.config import get_settings
from fleethub.core.domain import (
    ContainerStatus,
    Environment,
    JobKind,
    container_name_for,
    is_valid_slug,
)
from fleethub.core.errors import (
    ContainerNotFoundError,
    HostNotFoundError,
    InvalidSlugError,
    SlugConflictError,
    ValidationFailedError,
)
from fleethub.core.models import ApiEndpoint, Container, FrontendEndpoint, Host
from fleethub.core.security import generate_agent_token, hash_token

# Load settings once at module level
_settings = get_settings()

# Fields an operator may change through update_container
UPDATABLE_FIELDS = frozenset({
    "name",
    "environment",
    "frontend",
    "apis",
    "code_server_enabled",
    "idle_timeouts",
    "linked_container_id",
})


def _check_api_slugs(apis: list[ApiEndpoint]) -> None:
    slugs = [api.slug for api in apis]
    if len(slugs) != len(set(slugs)):
        raise ValidationFailedError("API slugs must be unique within a container")


async def _check_linked(db: AsyncSession, container_id: str | None, linked_id: str | None) -> None:
    if linked_id is None:
        return
    if linked_id == container_id:
        raise ValidationFailedError("A container cannot be linked to itself")
    if await db.get(Container, linked_id) is None:
        raise ValidationFailedError("Linked container does not exist")


async def create_container(
    db: AsyncSession,
    *,
    name: str,
    slug: str,
    host_id: str,
    frontend: FrontendEndpoint,
    apis: list[ApiEndpoint] | None = None,
    environment: Environment = Environment.DEVELOPMENT,
    code_server_enabled: bool = True,
    idle_timeouts: dict[str, int] | None = None,
    linked_container_id: str | None = None,
) -> tuple[Container, str]:
    """Create a container record in status deploying.

    Returns:
        (container, agent_token). The token is only available here;
        the record keeps its argon2 hash.

    Raises:
        InvalidSlugError, HostNotFoundError, SlugConflictError,
        ValidationFailedError
    """
    if not is_valid_slug(slug):
        raise InvalidSlugError()

    apis = apis or []
    _check_api_slugs(apis)

    if await db.get(Host, host_id) is None:
        raise HostNotFoundError()
    if await get_container_by_slug(db, slug) is not None:
        raise SlugConflictError()
    await _check_linked(db, None, linked_container_id)

    token = generate_agent_token()
    now = datetime.now(UTC)
    container = Container(
        name=name,
        slug=slug,
        environment=environment,
        host_id=host_id,
        container_name=container_name_for(_settings.container.name_prefix, slug),
        frontend=frontend.model_dump(),
        apis=[api.model_dump() for api in apis],
        code_server_enabled=code_server_enabled,
        idle_timeouts=idle_timeouts or {},
        linked_container_id=linked_container_id,
        status=ContainerStatus.DEPLOYING,
        status_changed_at=now,
        token_hash=hash_token(token),
        created_at=now,
        updated_at=now,
    )

    db.add(container)
    await db.commit()
    await db.refresh(container)

    return container, token


async def get_container(db: AsyncSession, container_id: str) -> Container:
    """Get container by ID.

    Raises:
        ContainerNotFoundError: If container not found
    """
    container = await db.get(Container, container_id)
    if container is None:
        raise ContainerNotFoundError()
    return container


async def get_container_by_slug(db: AsyncSession, slug: str) -> Container | None:
    result = await db.execute(select(Container).where(Container.slug == slug))
    return result.scalar_one_or_none()


async def list_containers(db: AsyncSession, host_id: str | None = None) -> list[Container]:
    stmt = select(Container).order_by(Container.created_at)
    if host_id is not None:
        stmt = stmt.where(Container.host_id == host_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_with_active_job(db: AsyncSession) -> list[Container]:
    """Containers carrying an in-flight job marker (startup recovery)."""
    result = await db.execute(select(Container).where(Container.active_job.is_not(None)))
    return list(result.scalars().all())


async def update_container(db: AsyncSession, container_id: str, changes: dict[str, Any]) -> Container:
    """Apply operator changes.

    Args:
        changes: Subset of UPDATABLE_FIELDS. frontend/apis may be given as
            models or plain dicts.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationFailedError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    container = await get_container(db, container_id)

    if "apis" in changes:
        apis = [ApiEndpoint.model_validate(api) for api in changes["apis"] or []]
        _check_api_slugs(apis)
        container.apis = [api.model_dump() for api in apis]
    if "frontend" in changes:
        container.frontend = FrontendEndpoint.model_validate(changes["frontend"]).model_dump()
    if "linked_container_id" in changes:
        await _check_linked(db, container.id, changes["linked_container_id"])
        container.linked_container_id = changes["linked_container_id"]
    if "name" in changes:
        container.name = changes["name"]
    if "environment" in changes:
        container.environment = Environment(changes["environment"])
    if "code_server_enabled" in changes:
        container.code_server_enabled = changes["code_server_enabled"]
    if "idle_timeouts" in changes:
        container.idle_timeouts = dict(changes["idle_timeouts"] or {})

    container.updated_at = datetime.now(UTC)
    await db.commit()
    await db.refresh(container)
    return container


async def set_enabled(db: AsyncSession, container_id: str, enabled: bool) -> Container:
    container = await get_container(db, container_id)
    container.enabled = enabled
    container.updated_at = datetime.now(UTC)
    await db.commit()
    await db.refresh(container)
    return container


async def delete_container(db: AsyncSession, container_id: str) -> None:
    container = await get_container(db, container_id)

    # Siblings pointing at this container lose the link
    result = await db.execute(
        select(Container).where(Container.linked_container_id == container_id)
    )
    for sibling in result.scalars().all():
        sibling.linked_container_id = None

    await db.delete(container)
    await db.commit()


async def set_status(
    db: AsyncSession,
    container_id: str,
    status: ContainerStatus,
    message: str | None = None,
) -> Container:
    """Move the lifecycle status (last writer wins)."""
    container = await get_container(db, container_id)
    now = datetime.now(UTC)
    if container.status != status:
        container.status_changed_at = now
    container.status = status
    container.status_message = message
    container.updated_at = now
    await db.commit()
    await db.refresh(container)
    return container


async def mark_connected(
    db: AsyncSession,
    container_id: str,
    version: str,
    ip_address: str | None,
) -> tuple[Container, bool]:
    """Set status connected and record the agent's attributes.

    Returns:
        (container, first_connect) where first_connect is True when the
        container was still deploying.
    """
    container = await get_container(db, container_id)
    first_connect = container.status == ContainerStatus.DEPLOYING
    now = datetime.now(UTC)

    if container.status != ContainerStatus.CONNECTED:
        container.status_changed_at = now
    container.status = ContainerStatus.CONNECTED
    container.status_message = None
    container.agent_version = version
    if ip_address:
        container.ip_address = ip_address
    container.updated_at = now

    await db.commit()
    await db.refresh(container)
    return container, first_connect


async def set_host(db: AsyncSession, container_id: str, host_id: str) -> Container:
    """Flip ownership. Only the migration engine calls this."""
    container = await get_container(db, container_id)
    container.host_id = host_id
    container.updated_at = datetime.now(UTC)
    await db.commit()
    await db.refresh(container)
    return container


async def set_identity(
    db: AsyncSession,
    container_id: str,
    *,
    slug: str,
    name: str,
    container_name: str,
) -> Container:
    """Replace slug, display name and runtime identifier.

    Raises:
        SlugConflictError: If another container took the slug meanwhile
    """
    container = await get_container(db, container_id)
    if slug != container.slug:
        other = await get_container_by_slug(db, slug)
        if other is not None and other.id != container_id:
            raise SlugConflictError()

    container.slug = slug
    container.name = name
    container.container_name = container_name
    container.updated_at = datetime.now(UTC)
    await db.commit()
    await db.refresh(container)
    return container


async def set_active_job(
    db: AsyncSession,
    container_id: str,
    kind: JobKind | None,
    job_id: str | None = None,
) -> None:
    """Persist (or clear, with kind=None) the in-flight job marker."""
    container = await get_container(db, container_id)
    container.active_job = kind.value if kind is not None else None
    container.active_job_id = job_id if kind is not None else None
    container.updated_at = datetime.now(UTC)
    await db.commit()


async def rotate_token(db: AsyncSession, container_id: str) -> str:
    """Replace the agent token (redeploy). Returns the new plaintext token."""
    container = await get_container(db, container_id)
    token = generate_agent_token()
    container.token_hash = hash_token(token)
    container.updated_at = datetime.now(UTC)
    await db.commit()
    return token
