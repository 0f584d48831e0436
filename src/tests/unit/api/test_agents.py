"""Unit tests for the agent WebSocket handshake."""

import json

import pytest
from fastapi import WebSocketDisconnect

from fleethub.app.api.v1.agents import CLOSE_UNAUTHORIZED


def _auth(slug: str, token: str) -> str:
    return json.dumps({"type": "auth", "token": token, "service_name": slug, "version": "1.0.0"})


class TestAgentHandshake:
    def test_bad_token_rejected(self, client, store, orchestrator) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        with client.websocket_connect("/api/v1/agents/ws") as ws:
            ws.send_text(_auth("blog", "wrong-token"))
            result = json.loads(ws.receive_text())
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_text()

        assert result == {
            "type": "auth_result",
            "success": False,
            "error": "Authentication failed",
        }
        assert exc.value.code == CLOSE_UNAUTHORIZED
        assert not orchestrator.registry.is_connected(container.id)

    def test_unknown_slug_rejected(self, client) -> None:
        with client.websocket_connect("/api/v1/agents/ws") as ws:
            ws.send_text(_auth("ghost", "agent-token"))
            result = json.loads(ws.receive_text())

        assert result["success"] is False

    def test_first_frame_must_be_auth(self, client) -> None:
        with client.websocket_connect("/api/v1/agents/ws") as ws:
            ws.send_text(json.dumps({"type": "heartbeat"}))
            result = json.loads(ws.receive_text())

        assert result["success"] is False
