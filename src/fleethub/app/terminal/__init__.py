"""Terminal relay between operator WebSockets and host agent shells."""

from fleethub.app.terminal.relay import relay_client_to_host, relay_host_to_client

__all__ = ["relay_client_to_host", "relay_host_to_client"]
