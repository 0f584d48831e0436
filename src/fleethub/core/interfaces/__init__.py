"""Core interfaces for the orchestrator."""

from fleethub.core.interfaces.host import ContainerSpec, ExportInfo, HostRuntime

__all__ = [
    "ContainerSpec",
    "ExportInfo",
    "HostRuntime",
]
