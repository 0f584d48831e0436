"""Domain models and enums."""

from fleethub.core.domain.container import (
    SLUG_PATTERN,
    CommandOutcome,
    ContainerStatus,
    Environment,
    HostStatus,
    ServiceAction,
    ServiceComponent,
    ServiceState,
    StackStatus,
    container_name_for,
    is_valid_slug,
    workspace_name_for,
)
from fleethub.core.domain.job import (
    MIGRATION_PHASES,
    RENAME_PHASES,
    TERMINAL_PHASES,
    ArtifactKind,
    JobKind,
    JobPhase,
    is_terminal,
    progress_pct,
)
from fleethub.core.domain.stack import (
    derive_stack_status,
    outcome_for_state,
    state_for_outcome,
)
from fleethub.core.domain.throughput import ThroughputEstimator

__all__ = [
    "SLUG_PATTERN",
    "CommandOutcome",
    "ContainerStatus",
    "Environment",
    "HostStatus",
    "ServiceAction",
    "ServiceComponent",
    "ServiceState",
    "StackStatus",
    "container_name_for",
    "is_valid_slug",
    "workspace_name_for",
    "MIGRATION_PHASES",
    "RENAME_PHASES",
    "TERMINAL_PHASES",
    "ArtifactKind",
    "JobKind",
    "JobPhase",
    "is_terminal",
    "progress_pct",
    "derive_stack_status",
    "outcome_for_state",
    "state_for_outcome",
    "ThroughputEstimator",
]
