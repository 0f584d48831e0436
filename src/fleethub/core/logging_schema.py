"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (fleethub-orchestrator)
- component: Component name (registry, services, migration, ...)
- event: Event type (migration_phase, agent_connected, ...)
- trace_id: Request trace ID
- job_id: Migration/rename job ID

High cardinality fields (OK in logs, NOT in metric labels):
- container_id, host_id, transfer_id, slug
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Coordinator events
    RECONCILE_COMPLETE = "reconcile_complete"
    STATE_CHANGED = "state_changed"
    PROBE_COMPLETE = "probe_complete"

    # Operation events
    OPERATION_STARTED = "operation_started"
    OPERATION_FAILED = "operation_failed"
    OPERATION_TIMEOUT = "operation_timeout"
    OPERATION_SUCCESS = "operation_success"

    # Agent session events
    AGENT_CONNECTED = "agent_connected"
    AGENT_DISCONNECTED = "agent_disconnected"
    AGENT_AUTH_FAILED = "agent_auth_failed"
    AGENT_STALE = "agent_stale"
    AGENT_ERROR = "agent_error"
    COMMAND_DISPATCHED = "command_dispatched"
    COMMAND_DROPPED = "command_dropped"

    # Job events
    MIGRATION_PHASE = "migration_phase"
    MIGRATION_CANCELLED = "migration_cancelled"
    RENAME_PHASE = "rename_phase"
    CLEANUP_FAILED = "cleanup_failed"
    RECOVERY = "recovery"

    # Lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"

    # Fan-out events
    EVENT_DROPPED = "event_dropped"
    OBSERVER_CONNECTED = "observer_connected"
    OBSERVER_DISCONNECTED = "observer_disconnected"
    REDIS_CONNECTION_ERROR = "redis_connection_error"

    DB_ERROR = "db_error"


class ErrorClass(StrEnum):
    """Error classification for structured error logging.

    Use these in the 'error_class' extra field to enable
    filtering by error type and setting up alerts.
    """

    TRANSIENT = "transient"  # Retryable (network timeout, temp failure)
    PERMANENT = "permanent"  # Not retryable (invalid input, not found)
    TIMEOUT = "timeout"


class Component(StrEnum):
    """Component identifiers for log filtering."""

    REGISTRY = "registry"  # Agent session registry
    SERVICES = "services"  # Service component controller
    LIFECYCLE = "lifecycle"
    MIGRATION = "migration"
    RENAME = "rename"
    PROBER = "prober"
    RECONCILER = "reconciler"
    EVENTS = "events"  # Fan-out channel
    API = "api"
    TERMINAL = "terminal"
