"""API v1 module."""

from fleethub.app.api.v1.agents import router as agents_router
from fleethub.app.api.v1.containers import router as containers_router
from fleethub.app.api.v1.events import router as events_router
from fleethub.app.api.v1.hosts import router as hosts_router
from fleethub.app.api.v1.terminal import router as terminal_router

__all__ = [
    "agents_router",
    "containers_router",
    "events_router",
    "hosts_router",
    "terminal_router",
]
