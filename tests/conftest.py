"""Shared fakes for relay tests: in-memory transports, no network."""

import asyncio
import json

import pytest

from callrelay.legs.agent import AgentLeg
from callrelay.legs.telephony import TelephonyLeg
from callrelay.session import CallSession
from callrelay.transports.base import NORMAL_CLOSURE, BaseTransport, TransportClosed


class FakeTransport(BaseTransport):
    """Transport backed by a queue of inbound frames and a list of sent ones."""

    def __init__(self) -> None:
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.closed_with: tuple[int, str] | None = None
        self._connected = True

    # Test helpers

    def feed(self, frame) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self.inbound.put_nowait(frame)

    def drop(self, code: int, reason: str = "") -> None:
        """Simulate the remote end closing the connection."""
        self.inbound.put_nowait(TransportClosed(code, reason))

    def sent_json(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def sent_events(self, event: str) -> list[dict]:
        return [m for m in self.sent_json() if m.get("event") == event]

    # BaseTransport

    async def send(self, data) -> None:
        if not self._connected:
            raise TransportClosed(1006, "closed")
        self.sent.append(data)

    async def recv(self):
        item = await self.inbound.get()
        if isinstance(item, TransportClosed):
            self._connected = False
            raise item
        return item

    async def disconnect(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self._connected:
            return
        self._connected = False
        self.closed_with = (code, reason)
        self.inbound.put_nowait(TransportClosed(code, reason))

    def is_connected(self) -> bool:
        return self._connected


class FakeAgentService:
    """Hands out signed URLs and agent connections; records every attempt."""

    def __init__(self) -> None:
        self.url_requests = 0
        self.connections: list[FakeTransport] = []
        self.fail_next_urls = 0

    async def signed_url(self) -> str:
        self.url_requests += 1
        if self.fail_next_urls:
            self.fail_next_urls -= 1
            raise RuntimeError("upstream unavailable")
        return f"wss://agent.test/convai?token={self.url_requests}"

    async def connect(self, url: str) -> FakeTransport:
        transport = FakeTransport()
        self.connections.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.connections[-1]


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


START_FRAME = {
    "event": "start",
    "sequenceNumber": "1",
    "start": {
        "streamSid": "ST1",
        "callSid": "CA1",
        "accountSid": "AC1",
        "customParameters": {"name": "Ana"},
        "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
    },
    "streamSid": "ST1",
}


@pytest.fixture
def start_frame():
    return json.loads(json.dumps(START_FRAME))


@pytest.fixture
def agent_service():
    return FakeAgentService()


@pytest.fixture
def make_legs(agent_service):
    """Build a wired TelephonyLeg/AgentLeg pair over fake transports."""

    def _make(reconnect_delay=0.01, hangup_grace=0.01, max_reconnect_attempts=5):
        session = CallSession()
        twilio = FakeTransport()
        agent = AgentLeg(
            session,
            url_provider=agent_service.signed_url,
            connector=agent_service.connect,
            reconnect_delay=reconnect_delay,
            hangup_grace=hangup_grace,
            max_reconnect_attempts=max_reconnect_attempts,
        )
        telephony = TelephonyLeg(session, twilio, agent)
        agent.telephony = telephony
        return session, twilio, telephony, agent

    return _make
