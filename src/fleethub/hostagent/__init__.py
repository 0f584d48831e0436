"""Host agent client."""

from fleethub.hostagent.client import HostAgentClient, HostAgentConfig, HostAgentPool

__all__ = ["HostAgentClient", "HostAgentConfig", "HostAgentPool"]
