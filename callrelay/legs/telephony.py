"""Telephony leg: the inbound Twilio Media Streams connection.

Reads Twilio events in arrival order and drives the CallSession. Closing of
this connection is the only thing that tears a session down.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from callrelay.core.events import (
    AnyTelephonyEvent,
    MarkReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
    TelephonyEventType,
    UnknownTelephonyEvent,
)
from callrelay.legs.agent import AgentLeg
from callrelay.serializers.base import FrameDecodeError
from callrelay.serializers.translate import agent_audio_to_telephony
from callrelay.serializers.twilio import TwilioSerializer, decode_telephony_frame
from callrelay.session import CallSession
from callrelay.transports.base import BaseTransport, TransportClosed

EventHandler = Callable[[AnyTelephonyEvent], Awaitable[None]]


class TelephonyLeg:
    """Adapter for the Twilio side of one call."""

    def __init__(self, session: CallSession, transport: BaseTransport, agent: AgentLeg) -> None:
        self.session = session
        self.transport = transport
        self.agent = agent
        self._hangup_task: asyncio.Task | None = None

        self._handlers: dict[TelephonyEventType, EventHandler] = {
            TelephonyEventType.CONNECTED: self._on_connected,
            TelephonyEventType.START: self._on_start,
            TelephonyEventType.MEDIA: self._on_media,
            TelephonyEventType.MARK: self._on_mark,
            TelephonyEventType.STOP: self._on_stop,
        }

    # ------------------------------------------------------------------
    # Inbound loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Process Twilio frames until the connection closes, then tear down."""
        try:
            while True:
                raw = await self.transport.recv()
                await self.handle_frame(raw)
        except TransportClosed as closed:
            logger.debug(f"[Twilio] Connection closed with code {closed.code}")
        except Exception as e:
            logger.error(f"[Twilio] Connection error: {e}")
        finally:
            await self._on_disconnect()

    async def handle_frame(self, raw: bytes | str) -> None:
        """Decode and dispatch one Twilio frame; malformed ones are dropped."""
        try:
            event = decode_telephony_frame(raw)
        except FrameDecodeError as e:
            logger.warning(f"[Twilio] Error processing message: {e}")
            return

        if event.event_type is not TelephonyEventType.MEDIA:
            kind = event.event_type.value if event.event_type else getattr(event, "event", "")
            logger.info(f"[Twilio] Received event: {kind}")

        handler = self._handlers.get(event.event_type, self._on_unhandled)
        await handler(event)

    async def _on_connected(self, event: StreamConnected) -> None:
        logger.debug(f"[Twilio] Media stream protocol {event.protocol} {event.version}")

    async def _on_start(self, event: StreamStarted) -> None:
        if not self.session.start_stream(event.stream_sid, event.call_sid, event.custom_parameters):
            return
        logger.info(
            f"[Twilio] Stream started - StreamSid: {event.stream_sid}, "
            f"CallSid: {event.call_sid}"
        )
        logger.info(f"[Twilio] Start parameters: {dict(self.session.custom_parameters)}")

    async def _on_media(self, event: MediaReceived) -> None:
        if not self.agent.is_open:
            return
        try:
            await self.agent.send_audio(event.payload)
        except FrameDecodeError as e:
            logger.warning(f"[Twilio] Dropping media frame: {e}")

    async def _on_mark(self, event: MarkReceived) -> None:
        logger.debug(f"[Twilio] Playback reached mark {event.name}")

    async def _on_stop(self, event: StreamStopped) -> None:
        logger.info(f"[Twilio] Stream {self.session.stream_sid} ended")
        self.session.end()
        if self.agent.is_open:
            logger.info("[Twilio] Closing ElevenLabs connection because call ended")
            await self.agent.close(reason="Call ended normally")

    async def _on_unhandled(self, event: UnknownTelephonyEvent) -> None:
        logger.info(f"[Twilio] Unhandled event: {event.event}")

    async def _on_disconnect(self) -> None:
        logger.info("[Twilio] Client disconnected")
        self.session.end()
        await self.agent.shutdown("Twilio client disconnected")

    # ------------------------------------------------------------------
    # Relay -> Twilio
    # ------------------------------------------------------------------

    async def send_media(self, audio: str) -> bool:
        """Play agent audio to the caller. Dropped unless the stream is live."""
        if not self.session.is_active:
            return False
        message = agent_audio_to_telephony(audio, self.session.stream_sid)
        if message is None:
            return False
        if await self._send(message):
            self.session.audio_frames_out += 1
            return True
        return False

    async def send_clear(self) -> bool:
        """Discard audio Twilio has buffered but not yet played."""
        if not self.session.is_active or not self.session.stream_sid:
            return False
        return await self._send(TwilioSerializer.clear_message(self.session.stream_sid))

    async def send_stop(self) -> bool:
        if not self.session.stream_sid:
            return False
        return await self._send(TwilioSerializer.stop_message(self.session.stream_sid))

    def hangup(self, delay: float) -> asyncio.Task:
        """Close the Twilio socket after ``delay`` seconds if still open."""
        if self._hangup_task is None or self._hangup_task.done():
            self._hangup_task = asyncio.create_task(self._hangup_after(delay))
        return self._hangup_task

    async def _hangup_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.transport.is_connected():
            logger.info("[Twilio] Closing media stream")
            await self.transport.disconnect()

    async def _send(self, message: str) -> bool:
        if not self.transport.is_connected():
            logger.debug("[Twilio] Connection not open, message dropped")
            return False
        try:
            await self.transport.send(message)
        except TransportClosed as e:
            logger.debug(f"[Twilio] Send failed: {e}")
            return False
        return True
