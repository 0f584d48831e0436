"""Service state mapping and stack status derivation.

Pure functions shared by the registry (agent reports) and the API
(container detail).
"""

from fleethub.core.domain.container import CommandOutcome, ServiceState, StackStatus

_STATE_TO_OUTCOME = {
    ServiceState.RUNNING: CommandOutcome.STARTED,
    ServiceState.STOPPED: CommandOutcome.STOPPED,
    ServiceState.MANUALLY_OFF: CommandOutcome.STOPPED,
    ServiceState.STARTING: CommandOutcome.STARTING,
    ServiceState.STOPPING: CommandOutcome.STOPPING,
}

_OUTCOME_TO_STATE = {
    CommandOutcome.STARTED: ServiceState.RUNNING,
    CommandOutcome.STOPPED: ServiceState.STOPPED,
    CommandOutcome.STARTING: ServiceState.STARTING,
    CommandOutcome.STOPPING: ServiceState.STOPPING,
}

_TRANSITIONAL = frozenset({ServiceState.STARTING, ServiceState.STOPPING})


def outcome_for_state(state: ServiceState) -> CommandOutcome:
    """Map a reported steady/transitional state to the acknowledgement action."""
    return _STATE_TO_OUTCOME[state]


def state_for_outcome(outcome: CommandOutcome) -> ServiceState:
    """Map an acknowledgement action back to the component state."""
    return _OUTCOME_TO_STATE[outcome]


def _normalize(state: ServiceState) -> ServiceState:
    return ServiceState.STOPPED if state == ServiceState.MANUALLY_OFF else state


def derive_stack_status(app: ServiceState, db: ServiceState) -> StackStatus:
    """Derive the combined app+db status.

    running/running -> running, stopped/stopped -> stopped, any
    transitional component -> that transition (app first), anything
    else (one running, one stopped) -> partial.
    """
    app, db = _normalize(app), _normalize(db)

    match (app, db):
        case (ServiceState.RUNNING, ServiceState.RUNNING):
            return StackStatus.RUNNING
        case (ServiceState.STOPPED, ServiceState.STOPPED):
            return StackStatus.STOPPED

    for state in (app, db):
        if state in _TRANSITIONAL:
            return StackStatus(state.value)

    return StackStatus.PARTIAL
