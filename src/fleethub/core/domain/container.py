"""Container, host and service component enums."""

import re
from enum import StrEnum

SLUG_PATTERN = re.compile(r"[a-z0-9-]{3,32}")


class ContainerStatus(StrEnum):
    """Container lifecycle status.

    deploying -> {connected, pending, disconnected, error}
    """

    DEPLOYING = "deploying"
    CONNECTED = "connected"  # agent session live
    PENDING = "pending"  # agent expected soon (e.g. right after start)
    DISCONNECTED = "disconnected"  # no session, none expected
    ERROR = "error"  # unrecoverable deploy failure, until retried


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class HostStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class ServiceComponent(StrEnum):
    """Named facet of a container that can be started/stopped on its own."""

    APP = "app"
    DB = "db"
    CODE_SERVER = "code_server"


class ServiceState(StrEnum):
    """Runtime state reported by the agent for one component."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    MANUALLY_OFF = "manually_off"  # stopped by operator, no auto-wake


class ServiceAction(StrEnum):
    """Command sent to the agent."""

    START = "start"
    STOP = "stop"


class CommandOutcome(StrEnum):
    """Action vocabulary of service-command acknowledgements."""

    STARTED = "started"
    STOPPED = "stopped"
    STARTING = "starting"
    STOPPING = "stopping"


class StackStatus(StrEnum):
    """Combined status of the app+db pair."""

    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    STOPPING = "stopping"
    PARTIAL = "partial"


def is_valid_slug(slug: str) -> bool:
    return SLUG_PATTERN.fullmatch(slug) is not None


def container_name_for(prefix: str, slug: str) -> str:
    """Runtime identifier of a container (e.g. hr-blog)."""
    return f"{prefix}{slug}"


def workspace_name_for(container_name: str, suffix: str) -> str:
    """Name of the persistent workspace (e.g. hr-blog-workspace)."""
    return f"{container_name}{suffix}"
