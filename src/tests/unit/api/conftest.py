"""Fixtures for API unit tests.

Routes run against the in-memory store; the lifespan (PostgreSQL, Redis,
coordinators) is not started.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fleethub.app.main import app
from fleethub.control.orchestrator import Orchestrator, build_orchestrator, get_orchestrator
from fleethub.infra import get_session


@pytest.fixture
def orchestrator(store, session_factory, events, runtime_factory) -> Orchestrator:
    return build_orchestrator(session_factory, events, runtime_factory)


@pytest.fixture
def client(orchestrator: Orchestrator):
    async def session_override():
        yield MagicMock()

    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()
