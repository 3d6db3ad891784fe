from __future__ import annotations

from fastapi.testclient import TestClient
from twilio.base.exceptions import TwilioException

from integrations.twilio_client import TwilioConfig, connect_stream_twiml, to_ws_url

TWILIO_CFG = TwilioConfig(
    account_sid="AC123",
    auth_token="token",
    from_number="+15005550006",
    public_base_url="https://example.com",
)


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self, error: Exception | None = None) -> None:
        self.requests: list[dict] = []
        self._error = error

    def create(self, *, to: str, from_: str, twiml: str):
        self.requests.append({"to": to, "from_": from_, "twiml": twiml})
        if self._error is not None:
            raise self._error
        return FakeTwilioCall("CA123")


class FakeTwilioClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = FakeTwilioCalls(error)


def _override(app, twilio_client: FakeTwilioClient) -> None:
    import api.twilio_routes as twilio_routes

    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: twilio_client
    app.dependency_overrides[twilio_routes.get_twilio_cfg] = lambda: TWILIO_CFG


def test_outbound_call_connects_to_media_stream(app):
    twilio_client = FakeTwilioClient()
    _override(app, twilio_client)

    with TestClient(app) as client:
        resp = client.post("/api/twilio/calls", json={"to_number": "+41791234567"})
    app.dependency_overrides.clear()

    assert resp.status_code == 200
    assert resp.json() == {"call_sid": "CA123", "to_number": "+41791234567"}

    request = twilio_client.calls.requests[0]
    assert request["to"] == "+41791234567"
    assert request["from_"] == "+15005550006"
    assert '<Connect><Stream url="wss://example.com/api/twilio/media-stream"' in request["twiml"]


def test_outbound_call_failure_maps_to_bad_gateway(app):
    _override(app, FakeTwilioClient(TwilioException("invalid number")))

    with TestClient(app) as client:
        resp = client.post("/api/twilio/calls", json={"to_number": "+1"})
    app.dependency_overrides.clear()

    assert resp.status_code == 502


def test_outbound_call_requires_number(app):
    _override(app, FakeTwilioClient())

    with TestClient(app) as client:
        resp = client.post("/api/twilio/calls", json={})
    app.dependency_overrides.clear()

    assert resp.status_code == 422


def test_to_ws_url():
    assert to_ws_url("https://a.example/x") == "wss://a.example/x"
    assert to_ws_url("http://a.example/x") == "ws://a.example/x"
    assert to_ws_url("wss://a.example/x") == "wss://a.example/x"


def test_outbound_call_without_credentials_is_unavailable(client):
    resp = client.post("/api/twilio/calls", json={"to_number": "+41791234567"})
    assert resp.status_code == 503
    assert "TWILIO_ACCOUNT_SID" in resp.json()["detail"]


def test_connect_stream_twiml():
    xml = connect_stream_twiml("wss://example.com/api/twilio/media-stream", "Hello & welcome")
    assert xml.startswith("<?xml")
    assert "<Say>Hello &amp; welcome</Say>" in xml
    assert xml.index("<Say>") < xml.index("<Connect>")
    assert "<Say>" not in connect_stream_twiml("wss://example.com/x")
