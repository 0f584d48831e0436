"""fleethub - container fleet orchestrator."""

__version__ = "0.1.0"
