"""Unit tests for event stream filtering."""

import json

from fleethub.app.api.v1.events import _filter_payload


def _envelope(event_type: str, **data) -> str:
    return json.dumps({"type": event_type, "data": data})


class TestFilterPayload:
    def test_unfiltered_passes_everything(self) -> None:
        payload = _envelope("hosts:status", hostId="h1", status="online")

        assert _filter_payload(payload, None) == ("hosts:status", payload)

    def test_filter_by_app(self) -> None:
        mine = _envelope("agent:status", appId="c1", status="connected")
        other = _envelope("agent:status", appId="c2", status="connected")

        assert _filter_payload(mine, "c1") == ("agent:status", mine)
        assert _filter_payload(other, "c1") is None

    def test_filter_drops_host_events(self) -> None:
        assert _filter_payload(_envelope("hosts:status", hostId="h1"), "c1") is None

    def test_invalid_json(self) -> None:
        assert _filter_payload("{not json", None, transport="ws") is None

    def test_missing_type(self) -> None:
        payload = json.dumps({"data": {"appId": "c1"}})

        assert _filter_payload(payload, "c1") == ("message", payload)
