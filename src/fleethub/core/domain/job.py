"""Migration/rename phase vocabulary and progress mapping."""

from enum import StrEnum


class JobKind(StrEnum):
    MIGRATION = "migration"
    RENAME = "rename"


class JobPhase(StrEnum):
    """Phases shared by migration and rename jobs."""

    STOPPING = "stopping"
    EXPORTING = "exporting"
    TRANSFERRING = "transferring"
    TRANSFERRING_WORKSPACE = "transferring_workspace"
    IMPORTING = "importing"
    IMPORTING_WORKSPACE = "importing_workspace"
    STARTING = "starting"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ArtifactKind(StrEnum):
    """Artifacts produced by an export on the host agent."""

    ROOTFS = "rootfs"
    WORKSPACE = "workspace"


MIGRATION_PHASES: tuple[JobPhase, ...] = (
    JobPhase.STOPPING,
    JobPhase.EXPORTING,
    JobPhase.TRANSFERRING,
    JobPhase.TRANSFERRING_WORKSPACE,
    JobPhase.IMPORTING,
    JobPhase.IMPORTING_WORKSPACE,
    JobPhase.STARTING,
    JobPhase.VERIFYING,
    JobPhase.COMPLETE,
)

RENAME_PHASES: tuple[JobPhase, ...] = (
    JobPhase.STOPPING,
    JobPhase.IMPORTING,
    JobPhase.STARTING,
    JobPhase.VERIFYING,
    JobPhase.COMPLETE,
)

TERMINAL_PHASES = frozenset({JobPhase.COMPLETE, JobPhase.FAILED, JobPhase.CANCELLED})

# (start, end) percentage of each phase; streaming phases interpolate by bytes
_PHASE_PROGRESS: dict[JobPhase, tuple[int, int]] = {
    JobPhase.STOPPING: (0, 0),
    JobPhase.EXPORTING: (10, 10),
    JobPhase.TRANSFERRING: (20, 80),
    JobPhase.TRANSFERRING_WORKSPACE: (80, 84),
    JobPhase.IMPORTING: (85, 85),
    JobPhase.IMPORTING_WORKSPACE: (87, 87),
    JobPhase.STARTING: (90, 90),
    JobPhase.VERIFYING: (93, 93),
    JobPhase.COMPLETE: (100, 100),
}


def is_terminal(phase: JobPhase) -> bool:
    return phase in TERMINAL_PHASES


def progress_pct(phase: JobPhase, done: int = 0, total: int = 0) -> int | None:
    """Overall progress for a phase, interpolated by bytes within it.

    Returns None for failed/cancelled (the caller keeps the last value).
    """
    bounds = _PHASE_PROGRESS.get(phase)
    if bounds is None:
        return None
    start, end = bounds
    if end == start or total <= 0:
        return start
    fraction = min(max(done / total, 0.0), 1.0)
    return start + int((end - start) * fraction)
