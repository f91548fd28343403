"""Tests for the HTTP routes, call placement and the signed URL client."""

import asyncio
import json
import xml.etree.ElementTree as ET
from contextlib import asynccontextmanager
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
from aiohttp import web
from aiohttp import test_utils
from fastapi.testclient import TestClient
from twilio.base.exceptions import TwilioException

from callrelay.bridge import CallRelay
from callrelay.calls import (
    STREAM_PARAMETERS,
    CallPlacementError,
    CallPlacer,
    OutboundCallRequest,
    build_stream_twiml,
)
from callrelay.server import create_app
from callrelay.signed_url import SIGNED_URL_PATH, SignedUrlClient, SignedUrlError

from conftest import FakeTransport


class FakeCallPlacer:
    """Stands in for CallPlacer; records every request."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[tuple[OutboundCallRequest, str]] = []

    async def place(self, request: OutboundCallRequest, host: str) -> str:
        self.requests.append((request, host))
        if self.fail:
            raise CallPlacementError("number is unverified")
        return "CA123"


@pytest.fixture
def placer():
    return FakeCallPlacer()


@pytest.fixture
def client(placer, agent_service):
    relay = CallRelay(
        {},
        url_provider=agent_service.signed_url,
        connector=agent_service.connect,
        call_placer=placer,
    )
    with TestClient(create_app(relay=relay)) as test_client:
        yield test_client


# ==========================================================================
# Routes
# ==========================================================================


class TestRoutes:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Server is running"}

    def test_health(self, client):
        response = client.get("/health")
        assert response.json() == {"status": "ok", "active_calls": 0}

    def test_outbound_call(self, client, placer):
        response = client.post(
            "/outbound-call",
            json={"phone_number": "+15551234567", "name": "Ana", "credit_amount": 75000},
        )
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Call initiated",
            "callSid": "CA123",
        }
        request, host = placer.requests[0]
        assert request.phone_number == "+15551234567"
        assert request.name == "Ana"
        assert request.credit_amount == "75000"
        assert request.organization == "Datágora"
        assert host == "testserver"

    @pytest.mark.parametrize("body", [{}, {"phone_number": ""}, {"name": "Ana"}])
    def test_outbound_call_requires_phone_number(self, client, placer, body):
        response = client.post("/outbound-call", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Phone number is required"}
        assert placer.requests == []

    def test_outbound_call_rejects_non_json(self, client):
        response = client.post(
            "/outbound-call", content=b"phone_number=1", headers={"content-type": "text/plain"}
        )
        assert response.status_code == 400

    def test_outbound_call_failure(self, client, placer):
        placer.fail = True
        response = client.post("/outbound-call", json={"phone_number": "+15551234567"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to initiate call"}

    @pytest.mark.parametrize("method", ["get", "post"])
    def test_twiml(self, client, method):
        response = getattr(client, method)(
            "/outbound-call-twiml",
            params={"name": "Ana", "phone_number": "+15551234567", "client_id": "C-1"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")

        root = ET.fromstring(response.content)
        stream = root.find("./Connect/Stream")
        assert stream.get("url") == "wss://testserver/outbound-media-stream"
        params = {p.get("name"): p.get("value") for p in stream.findall("Parameter")}
        assert list(params) == list(STREAM_PARAMETERS)
        assert params["name"] == "Ana"
        assert params["phone_number"] == "+15551234567"
        assert params["client_id"] == "C-1"
        assert params["organization"] == ""


class TestMediaStreamRoute:

    def test_relays_agent_audio_to_twilio(self, placer, agent_service):
        async def wait_for_call() -> str:
            # Hand out the URL only once the stream has started.
            for _ in range(200):
                if relay.sessions.active_count:
                    break
                await asyncio.sleep(0.01)
            return await agent_service.signed_url()

        async def connect(url: str) -> FakeTransport:
            transport = await agent_service.connect(url)
            transport.feed({"type": "audio", "audio": {"chunk": "AQID"}})
            return transport

        relay = CallRelay({}, url_provider=wait_for_call, connector=connect, call_placer=placer)

        with TestClient(create_app(relay=relay)) as test_client:
            with test_client.websocket_connect("/outbound-media-stream") as ws:
                ws.send_text(json.dumps({"event": "connected", "protocol": "Call"}))
                ws.send_text(
                    json.dumps(
                        {
                            "event": "start",
                            "streamSid": "ST1",
                            "start": {
                                "streamSid": "ST1",
                                "callSid": "CA1",
                                "customParameters": {"name": "Ana"},
                            },
                        }
                    )
                )
                assert ws.receive_json() == {
                    "event": "media",
                    "streamSid": "ST1",
                    "media": {"payload": "AQID"},
                }
                ws.send_text(json.dumps({"event": "stop", "streamSid": "ST1"}))

        init = agent_service.connections[0].sent_json()[0]
        assert init["dynamic_variables"]["name"] == "Ana"
        assert init["dynamic_variables"]["client_id"] == "CA1"


# ==========================================================================
# Call placement
# ==========================================================================


class FakeCalls:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.created: list[dict] = []

    def create(self, **kwargs):
        self.created.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(sid="CA999")


class TestCallPlacer:

    @pytest.mark.asyncio
    async def test_place(self):
        calls = FakeCalls()
        placer = CallPlacer("AC1", "token", "+15550000000", client=SimpleNamespace(calls=calls))
        request = OutboundCallRequest(phone_number="+15551234567", name="Ana")

        sid = await placer.place(request, "relay.example.com")

        assert sid == "CA999"
        created = calls.created[0]
        assert created["from_"] == "+15550000000"
        assert created["to"] == "+15551234567"
        url = urlparse(created["url"])
        assert url.scheme == "https"
        assert url.netloc == "relay.example.com"
        assert url.path == "/outbound-call-twiml"
        query = parse_qs(url.query)
        assert query["name"] == ["Ana"]
        assert query["organization"] == ["Datágora"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TwilioException("rejected"), OSError("unreachable")])
    async def test_failures_are_wrapped(self, error):
        calls = FakeCalls(error=error)
        placer = CallPlacer("AC1", "token", "+15550000000", client=SimpleNamespace(calls=calls))

        with pytest.raises(CallPlacementError):
            await placer.place(OutboundCallRequest(phone_number="+1555"), "relay.example.com")

    def test_request_defaults(self):
        request = OutboundCallRequest(phone_number="+1555")
        params = request.stream_parameters()
        assert params["name"] == "Cliente"
        assert params["credit_amount"] == "50000"
        assert params["prompt"] == ""

    def test_stream_twiml_escapes_values(self):
        twiml = build_stream_twiml("relay.example.com", {"name": 'Ana & "Co"'})
        stream = ET.fromstring(twiml.encode()).find("./Connect/Stream")
        names = {p.get("name"): p.get("value") for p in stream.findall("Parameter")}
        assert names["name"] == 'Ana & "Co"'


# ==========================================================================
# Signed URL
# ==========================================================================


@asynccontextmanager
async def _elevenlabs(handler):
    app = web.Application()
    app.router.add_get(SIGNED_URL_PATH, handler)
    async with test_utils.TestServer(app) as server:
        client = SignedUrlClient("key-1", "agent_1", api_base=str(server.make_url("/")))
        try:
            yield client
        finally:
            await client.close()


class TestSignedUrlClient:

    @pytest.mark.asyncio
    async def test_get_signed_url(self):
        seen = {}

        async def handler(request):
            seen["agent_id"] = request.query.get("agent_id")
            seen["api_key"] = request.headers.get("xi-api-key")
            return web.json_response({"signed_url": "wss://agent.test/convai?token=1"})

        async with _elevenlabs(handler) as client:
            url = await client.get_signed_url()

        assert url == "wss://agent.test/convai?token=1"
        assert seen == {"agent_id": "agent_1", "api_key": "key-1"}

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        async def handler(request):
            return web.json_response({"detail": "invalid api key"}, status=401)

        async with _elevenlabs(handler) as client:
            with pytest.raises(SignedUrlError, match="401"):
                await client.get_signed_url()

    @pytest.mark.asyncio
    async def test_missing_signed_url(self):
        async def handler(request):
            return web.json_response({"url": "wss://elsewhere"})

        async with _elevenlabs(handler) as client:
            with pytest.raises(SignedUrlError):
                await client.get_signed_url()

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        client = SignedUrlClient("key-1", "agent_1", api_base="http://127.0.0.1:1", timeout=2)
        try:
            with pytest.raises(SignedUrlError):
                await client.get_signed_url()
        finally:
            await client.close()
