"""WebSocket transports for callrelay.

The agent leg is an outbound client connection made with the
``websockets`` library. The telephony leg is an inbound connection already
accepted by FastAPI, wrapped so both legs share one interface.
"""

from __future__ import annotations

from typing import Any

import websockets.asyncio.client
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from loguru import logger
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from callrelay.transports.base import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    BaseTransport,
    TransportClosed,
)


class WebSocketClientTransport(BaseTransport):
    """WebSocket client transport for the agent connection."""

    def __init__(self, url: str | None = None, **ws_kwargs: Any) -> None:
        self._url = url
        self._ws: Any | None = None
        self._ws_kwargs = ws_kwargs

    async def connect(self, url: str | None = None) -> None:
        url = url or self._url
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url
        self._ws = await websockets.asyncio.client.connect(url, **self._ws_kwargs)
        logger.debug("Agent WebSocket connected")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise self._closed(e) from e

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise TransportClosed(ABNORMAL_CLOSURE, "Not connected")
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise self._closed(e) from e

    async def disconnect(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._ws:
            await self._ws.close(code, reason)
            logger.debug(f"Agent WebSocket closed ({code} {reason})")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    @staticmethod
    def _closed(exc: ConnectionClosed) -> TransportClosed:
        if exc.rcvd is not None:
            return TransportClosed(exc.rcvd.code, exc.rcvd.reason)
        return TransportClosed(ABNORMAL_CLOSURE, "")


async def connect_agent(url: str) -> WebSocketClientTransport:
    """Open the agent leg connection to a signed URL."""
    transport = WebSocketClientTransport(url)
    await transport.connect()
    return transport


class FastAPIWebSocketTransport(BaseTransport):
    """Adapter making an accepted FastAPI WebSocket look like a transport."""

    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._connected = True

    async def send(self, data: bytes | str) -> None:
        try:
            if isinstance(data, bytes):
                await self._ws.send_bytes(data)
            else:
                await self._ws.send_text(data)
        except WebSocketDisconnect as e:
            self._connected = False
            raise TransportClosed(e.code, e.reason or "") from e
        except RuntimeError as e:
            self._connected = False
            raise TransportClosed(ABNORMAL_CLOSURE, str(e)) from e

    async def recv(self) -> bytes | str:
        if not self._connected:
            raise TransportClosed(NORMAL_CLOSURE, "Closed locally")
        try:
            msg = await self._ws.receive()
        except RuntimeError as e:
            # Starlette refuses to receive once the socket is closed.
            self._connected = False
            raise TransportClosed(ABNORMAL_CLOSURE, str(e)) from e

        if msg["type"] == "websocket.disconnect":
            self._connected = False
            raise TransportClosed(msg.get("code", NORMAL_CLOSURE), msg.get("reason") or "")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise TransportClosed(ABNORMAL_CLOSURE, f"Unexpected message type {msg['type']}")

    async def disconnect(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"Telephony WebSocket already closed: {e}")

    def is_connected(self) -> bool:
        return self._connected and self._ws.application_state == WebSocketState.CONNECTED
