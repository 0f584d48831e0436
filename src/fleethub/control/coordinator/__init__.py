"""Periodic coordinators (host probing, session reconciliation)."""

from fleethub.control.coordinator.base import CoordinatorBase
from fleethub.control.coordinator.prober import HostProber
from fleethub.control.coordinator.reconciler import SessionReconciler

__all__ = [
    "CoordinatorBase",
    "HostProber",
    "SessionReconciler",
]
